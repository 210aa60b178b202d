import pytest

from dex98.errors import EnvironmentCheckError, ValidationError
from dex98.identity import ReferenceTable, resolve, sanitize, strip_filename

from conftest import subject_name


class TestReferenceTable:
    def test_loads_all_subjects(self, table):
        assert len(table) == 151
        record = table.lookup(6)
        assert record.index == 6
        assert record.canonical_name == 'Dragon'
        assert record.palette_tag == '*'
        assert record.gallery_colors.black == (0x00, 0x18, 0x30)
        assert record.stem == '006-Dragon'

    def test_trailing_whitespace_is_trimmed(self, table):
        # the fixture writes "Dragon   " for index 6
        assert table.lookup(6).canonical_name == 'Dragon'

    def test_special_names_are_preserved(self, table):
        assert table.lookup(83).canonical_name == "Farfetch'd"
        assert table.lookup(122).canonical_name == 'Mr. Mime'

    def test_rows_must_be_sequential(self, tmp_path):
        path = tmp_path / 'bad.tsv'
        path.write_text('n\tname\ttag\tw\tb\tk\n'
                        '1\tAbc\t*\t#fff\t#ccc\t#000\n'
                        '3\tDef\t*\t#fff\t#ccc\t#000\n')
        with pytest.raises(EnvironmentCheckError, match='sequential'):
            ReferenceTable.load(str(path))

    def test_bad_color(self, tmp_path):
        path = tmp_path / 'bad.tsv'
        path.write_text('n\tname\ttag\tw\tb\tk\n1\tAbc\t*\tnotacolor\t#ccc\t#000\n')
        with pytest.raises(EnvironmentCheckError):
            ReferenceTable.load(str(path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(EnvironmentCheckError):
            ReferenceTable.load(str(tmp_path / 'missing.tsv'))

    def test_unknown_index(self, tmp_path):
        path = tmp_path / 'short.tsv'
        path.write_text('n\tname\ttag\tw\tb\tk\n1\tAbc\t*\t#fff\t#ccc\t#000\n')
        table = ReferenceTable.load(str(path))
        with pytest.raises(ValidationError, match='002'):
            table.lookup(2)


class TestSanitize:
    def test_clean_input_is_untouched(self):
        assert sanitize("083-Farfetch'd-1") == ("083-Farfetch'd-1", False)
        assert sanitize('122-Mr. Mime-0') == ('122-Mr. Mime-0', False)
        assert sanitize('029-Nidoran♀-2') == ('029-Nidoran♀-2', False)

    def test_unexpected_symbols_are_replaced(self):
        assert sanitize('006-Drag*n-1') == ('006-Drag?n-1', True)
        assert sanitize('006_Dragon') == ('006?Dragon', True)


class TestResolve:
    def test_accepts_every_valid_index(self, table):
        for index in range(1, 152):
            padded = f"{index:03d}"
            name = subject_name(index)
            for frame in (0, 1, 2):
                identity = resolve(f"{padded}-{name}-{frame}.png", f"/photos/{padded}", table)
                assert identity.index == padded
                assert identity.name == name
                assert identity.frame == frame
                assert not identity.sanitized

    def test_identity_fields(self, table):
        identity = resolve('/photos/006/006-Dragon-1.png', '/photos/006', table)
        assert identity.number == 6
        assert identity.stem == '006-Dragon-1'
        assert identity.title == '006 Dragon (1)'
        assert identity.frame_name == 'pose'

    @pytest.mark.parametrize('suffix', ['_corrected', '-corrected'])
    def test_corrected_suffix_is_stripped(self, table, suffix):
        identity = resolve(f"006-Dragon-2{suffix}.png", '006', table)
        assert identity.stem == '006-Dragon-2'

    @pytest.mark.parametrize('index', ['000', '152', '999'])
    def test_index_out_of_range(self, table, index):
        with pytest.raises(ValidationError, match='Invalid number'):
            resolve(f"{index}-Dragon-0.png", index, table)

    @pytest.mark.parametrize('index', ['6', '06', '0006', 'abc'])
    def test_index_format(self, table, index):
        with pytest.raises(ValidationError, match='Invalid number'):
            resolve(f"{index}-Dragon-0.png", index, table)

    def test_index_must_match_directory(self, table):
        with pytest.raises(ValidationError, match="directory '007'"):
            resolve('006-Dragon-0.png', '/photos/007', table)

    def test_short_name(self, table):
        with pytest.raises(ValidationError, match="Invalid name 'ab'"):
            resolve('006-ab-0.png', '006', table)

    def test_lowercase_name(self, table):
        with pytest.raises(ValidationError, match='TitleCase'):
            resolve('006-dragon-0.png', '006', table)

    def test_name_mismatch_reports_both_values(self, tmp_path):
        path = tmp_path / 'abd.tsv'
        path.write_text('n\tname\ttag\tw\tb\tk\n1\tAbd\t*\t#fff\t#ccc\t#000\n')
        table = ReferenceTable.load(str(path))
        with pytest.raises(ValidationError) as excinfo:
            resolve('001-Abc-0.png', '001', table)
        assert "'Abc'" in str(excinfo.value)
        assert "'Abd'" in str(excinfo.value)

    def test_name_must_match_exactly(self, table):
        with pytest.raises(ValidationError, match='mismatch'):
            resolve('006-DRAGON-0.png', '006', table)

    @pytest.mark.parametrize('frame', ['3', '9', '01', 'x'])
    def test_invalid_frame(self, table, frame):
        with pytest.raises(ValidationError, match='sprite number'):
            resolve(f"006-Dragon-{frame}.png", '006', table)

    @pytest.mark.parametrize('stem', ['006-Dragon', '006-Dragon-0-1', '006'])
    def test_wrong_token_count(self, table, stem):
        with pytest.raises(ValidationError, match='part'):
            resolve(f"{stem}.png", '006', table)

    def test_lossy_sanitize_is_flagged_and_rejected(self, table, capsys):
        with pytest.raises(ValidationError):
            resolve('006-Drag*n-0.png', '006', table)
        assert 'Warning' in capsys.readouterr().out

    def test_special_names(self, table):
        assert resolve("083-Farfetch'd-0.png", '083', table).name == "Farfetch'd"
        assert resolve('122-Mr. Mime-1.png', '122', table).name == 'Mr. Mime'
        assert resolve('029-Nidoran♀-2.png', '029', table).name == 'Nidoran♀'


def test_strip_filename():
    assert strip_filename('/a/b/006-Dragon-1.PNG') == '006-Dragon-1'
    assert strip_filename('006-Dragon-1_corrected.png') == '006-Dragon-1'
    assert strip_filename('006-Dragon-1') == '006-Dragon-1'
