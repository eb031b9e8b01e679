import setuptools

setuptools.setup(
    name='cosmos_emulation',
    version='1.0.0',
    description='In-memory emulation of a partitioned document database for application tests',
    author='Gabe',
    license='unlicense',
    packages=setuptools.find_packages(),
    zip_safe=False,
    python_requires='>=3.8',
    install_requires=[
        'attrs',
        'azure-cosmos>=4.0',
        'boltons',
        'coloredlogs',
        'dependency-injector>=4.0',
        'orjson',
    ],
    extras_require={
        'test': ['pytest'],
    },
)
