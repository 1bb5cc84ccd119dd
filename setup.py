"""Setup script for paybroker."""

from setuptools import setup, find_packages

setup(
    name="paybroker",
    version="1.0.0",
    description="Multi-provider payment orchestration for VNPay, MoMo, VietQR and payOS",
    python_requires=">=3.10",
    packages=find_packages(include=["paybroker", "paybroker.*"]),
    install_requires=[
        line.strip()
        for line in open("requirements.txt")
        if line.strip() and not line.startswith("#") and not line.startswith("git+")
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
        ],
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
            "pytest-cov>=4.1.0",
            "black>=23.0.0",
            "isort>=5.12.0",
            "flake8>=6.0.0",
            "mypy>=1.4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "paybroker-api=paybroker.api.main:run",
            "paybroker-outbox=paybroker.workers.outbox_publisher:main",
        ]
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Financial and Insurance Industry",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
