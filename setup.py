from setuptools import setup, find_packages

setup(
    name="winupdate",
    version="0.1.0",
    description="Stage and run Windows Update scripts on remote hosts with retries",
    author="",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.9",
    install_requires=[
        "paramiko>=3.4.0",
        "pyyaml>=6.0.1",
        "click>=8.1.7",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "winupdate=winupdate.cli:main",
        ],
    },
    package_data={"winupdate": ["scripts/*.ps1"]},
    include_package_data=True,
)
