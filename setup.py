from setuptools import find_packages, setup

setup(
    name="jenkins-docker-lab",
    version="0.1.0",
    packages=find_packages(
        include=[
            "lab_common",
            "lab_common.*",
            "lab_compose",
            "lab_compose.*",
            "lab_trust",
            "lab_trust.*",
            "lab_smoke",
            "lab_smoke.*",
            "lab_persistence",
            "lab_persistence.*",
            "lab_admin",
            "lab_admin.*",
        ]
    ),
    install_requires=[
        "requests>=2.31.0",
        "aiosqlite>=0.19.0",
        "click>=8.1.0",
        "PyYAML>=6.0",
        "paramiko>=3.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-xdist>=3.3.0",
            "cryptography>=41.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "jenkins-lab=lab_admin.cli:cli",
        ],
    },
    python_requires=">=3.11",
)
