"""
ragcore Setup Script

Install with: pip install -e .
Local embeddings: pip install -e ".[local-embeddings]"
Tests: pip install -e ".[test]"
"""

from setuptools import setup, find_packages

setup(
    name='ragcore',
    version='0.1.0',
    description='Hybrid retrieval core (vector + keyword + knowledge graph) with citations',
    packages=find_packages(include=['ragcore', 'ragcore.*']),
    package_data={
        'ragcore.config': ['retrieval.yaml'],
    },
    install_requires=[
        'sqlalchemy>=2.0.0',
        'aiosqlite>=0.19.0',
        'greenlet>=3.0.0',
        'pyyaml>=6.0.1',
        'numpy>=1.26.0',
        'aiohttp>=3.9.0',
        'click>=8.1.0',
        'structlog>=23.2.0',
        'falkordb>=1.0.0',
        'redis>=5.0.0',
    ],
    extras_require={
        'local-embeddings': [
            'sentence-transformers>=2.2.0',
        ],
        'postgres': [
            'asyncpg>=0.29.0',
        ],
        'test': [
            'pytest>=7.4.0',
            'pytest-asyncio>=0.23.0',
        ],
    },
    entry_points={
        'console_scripts': [
            'ragcore=ragcore.cli:cli',
        ],
    },
    python_requires='>=3.11',
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'Intended Audience :: Science/Research',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Topic :: Scientific/Engineering :: Artificial Intelligence',
        'Topic :: Text Processing :: Indexing',
    ],
)
