from setuptools import find_packages, setup

setup(
    name="feedr-backend",
    version="0.1.0",
    package_dir={"": "backend"},
    packages=find_packages(where="backend", exclude=["tests", "tests.*"]),
    py_modules=["app", "database"],
    install_requires=[
        "fastapi>=0.110",
        "uvicorn[standard]>=0.27",
        "sqlalchemy>=2.0",
        "alembic>=1.13",
        "pydantic>=2.5",
        "python-dotenv>=1.0",
        "PyYAML>=6.0",
        "aiohttp>=3.9",
        "openai>=1.30",
        "python-jose[cryptography]>=3.3",
        "psycopg2-binary>=2.9",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
            "httpx>=0.27",
        ],
    },
    include_package_data=True,
    python_requires=">=3.10",
    description="Batch generation backend for FEEDR (video and image variants)",
)
