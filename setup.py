from setuptools import setup, find_packages

setup(
    name="invoicex",
    version="0.1.0",
    description="Invoice processing pipeline with vendor templates and batch tracking",
    packages=find_packages(include=['invoicex', 'invoicex.*']),
    package_data={
        'invoicex': ['config/*.yaml', 'prompts/*.yaml'],
    },
    python_requires='>=3.11',
    install_requires=[
        'sqlalchemy>=2.0',
        'pydantic>=2.0',
        'pyyaml',
        'pdfminer.six',
        'openai>=1.0',
        'jinja2',
        'click',
        'boto3',
    ],
    extras_require={
        'postgres': ['psycopg2-binary'],
        'test': [
            'pytest',
            'pytest-asyncio',
            'moto[s3]>=5.0,<5.2',
        ],
    },
    entry_points={
        'console_scripts': [
            'invoicex=invoicex.cli:cli',
        ],
    },
)
