"""
Setup script for PodcastFlow Pro
"""
from setuptools import setup, find_packages

setup(
    name="podcastflow",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.10,<3.14",
    install_requires=[
        "fastapi>=0.110",
        "uvicorn[standard]>=0.27",
        "sqlalchemy>=2.0",
        "psycopg2-binary>=2.9",
        "alembic>=1.13",
        "pydantic[email]>=2.5",
        "python-jose[cryptography]>=3.3",
        "passlib[bcrypt]>=1.7.4",
        "bcrypt>=4.0",
        "python-dotenv>=1.0",
        "apscheduler>=3.10,<4",
        "boto3>=1.34",
        "pybars3>=0.9.7",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "httpx>=0.27",
        ],
    },
)
