from setuptools import find_packages, setup

setup(
    name="npflow",
    version="0.1",
    package_data={"npflow": ["py.typed"]},
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=["numpy"],
    extras_require={"test": ["pytest"]},
)
