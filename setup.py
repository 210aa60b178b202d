from setuptools import setup, find_packages

setup(
    name="dex98",
    version="1.0.0",
    description="Extract canonical LCD bitmaps from photos and compose sprite sheets and animations.",
    author="Alvin Kwabena",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    install_requires=[
        "opencv-python",
        "Pillow>=9.1",
        "numpy",
        "packaging"
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        'console_scripts': [
            'dex98=dex98.app:main',
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
    python_requires='>=3.9',
)
