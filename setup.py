from setuptools import setup, find_packages

setup(
    name="lbsimulator",
    version="0.1.0",
    description="Load balancer decision engine: selection policies, request lifecycle and dispatch modes",
    author="adamfilli",
    packages=find_packages(include=["lbsimulator", "lbsimulator.*"]),
    install_requires=[
        "matplotlib",
        "pandas",
    ],
    extras_require={
        "test": ["pytest"],
    },
    include_package_data=True,
    python_requires=">=3.11",
)
