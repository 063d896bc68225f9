from setuptools import setup


setup(
    name="sheet-splitter",
    version="0.1.0",
    description="Local tools to merge spreadsheets with different headers, clean them, and split the result",
    packages=["sheet_splitter"],
    install_requires=[
        "pandas",
        "chardet",
        "openpyxl",
        "streamlit",
    ],
    extras_require={
        "excel-legacy": ["xlrd"],
        "ods": ["odfpy"],
        "all": ["xlrd", "odfpy"],
    },
    entry_points={
        "console_scripts": [
            "sheet-splitter=sheet_splitter.cli:main",
        ]
    },
)
