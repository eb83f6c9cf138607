from setuptools import setup, find_packages
import sys

if sys.version_info < (3, 9):
    print("Please use python3.9 or newer.")
    sys.exit(1)


requires = [
    "requests",
    "WebOb",
    "zope.interface",
]

sqlalchemy_deps = ["sqlalchemy>=1.4"]

pyramid_deps = ["pyramid"]

test_deps = ["pytest"] + sqlalchemy_deps + pyramid_deps


setup(
    name="shopembed",
    version="0.1a",
    description="Unofficial oauth, request verification and script tag sync for embedded shopify apps.",
    install_requires=requires,
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_dir={"shopembed": "shopembed"},
    include_package_data=True,
    zip_safe=False,
    extras_require={
        "sqlalchemy": sqlalchemy_deps,
        "pyramid": pyramid_deps,
        "test": test_deps,
        "dev": ["flake8", "black"] + test_deps,
    },
)
