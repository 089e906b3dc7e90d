"""
Setup configuration for the AI Engine Gateway.
This allows the gateway to be installed in development mode.
"""

from setuptools import setup, find_packages

setup(
    name="ai-engine-gateway",
    version="2.0.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "fastapi",
        "uvicorn",
        "pydantic>=2",
        "python-dotenv",
        "requests",
        "groq",
        "google-genai",
        "redis>=5",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "httpx",
        ],
    },
)
