from setuptools import setup


setup(
    name="template-maestro",
    version="0.1.0",
    description="Template-driven validation, auto-fix and export for tabular uploads",
    packages=["template_maestro"],
    include_package_data=True,
    install_requires=[
        "pandas",
        "chardet",
        "openpyxl",
        "rapidfuzz",
        "streamlit",
    ],
    extras_require={
        "excel-legacy": ["xlrd"],
        "ods": ["odfpy"],
        "all": ["xlrd", "odfpy"],
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "template-maestro=template_maestro.cli:main",
        ]
    },
)
