# setup.py
from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="python-sdm-ensemble",
    version="0.1.0",
    author="mad-kiba",
    author_email="ogletix@gmail.com",
    description="Rarefaction, background sampling and ensemble combination for Species Distribution Modeling (SDM)",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/mad-kiba/sdm-library",
    packages=find_packages(exclude=["tests", "tests.*", "examples"]),
    install_requires=[
        "numpy>=1.20.0",
        "pandas>=1.3.0",
        "geopandas>=0.9.0",
        "rasterio>=1.2.0",
        "affine<3",  # affine 3.x breaks rasterio transforms (cached_property on slots)
        "scikit-learn>=1.0.0",
        "scipy>=1.7.0",
        "shapely>=2.0.0",
        "pydantic>=2.0",
        "PyYAML>=5.4",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Topic :: Scientific/Engineering :: GIS",
        "Intended Audience :: Science/Research",
    ],
    python_requires=">=3.10",
    entry_points={
        'console_scripts': [
            'sdm=sdm_ensemble.cli.sdm_cli:main',
        ],
    },
)
