from setuptools import setup, find_packages

setup(
    name='trackergeo',
    version='0.1',
    packages=find_packages(include=['trackergeo', 'trackergeo.*']),
    install_requires=[
        'numpy',
        'hist',
        'matplotlib',
        'mplhep'
    ],
    extras_require={
        'test': ['pytest'],
    },
    description='Extraction of tracker geometry and material records from a tracker layout',
)
