from setuptools import setup
from setuptools import find_packages


VERSION = "0.1.0"
DESCRIPTION = "Wide & Deep recommendation models with PyTorch made easy"
with open("README.md", encoding="utf-8") as f:
    LONG_DESCRIPTION = f.read()

remote_requires = [
    "s3fs",
    "pyarrow",
]
test_requires = [
    "pytest",
]

setup(
    name="carefree-recommend",
    version=VERSION,
    packages=find_packages(exclude=("tests",)),
    install_requires=[
        "torch",
        "numpy",
        "fsspec",
        "safetensors",
        "carefree-toolkit>=0.3.4",
    ],
    extras_require={
        "remote": remote_requires,
        "test": test_requires,
        "full": remote_requires + test_requires,
    },
    author="carefree0910",
    author_email="syameimaru.saki@gmail.com",
    description=DESCRIPTION,
    long_description=LONG_DESCRIPTION,
    long_description_content_type="text/markdown",
    include_package_data=True,
    keywords="python recommendation wide-and-deep deep-learning PyTorch",
)
