from setuptools import setup, find_packages

setup(
    name="tenant-operator",
    version="0.1.0",
    description="Kubernetes operator for managing Tenant custom resources",
    author="NeuralLog",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.11",
    install_requires=[
        "kopf>=1.37.0",
        "kubernetes>=28.1.0",
        "aiohttp>=3.9.0",
        "urllib3>=1.26",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
            "pyyaml>=6.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "tenant-operator=tenant_operator.operator:main",
        ],
    },
)
