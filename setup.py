import os
from setuptools import setup


VERSION = "0.6.0"


# We want to install only the netdimm client library, so that tools talking
# to a net dimm can depend on us.
with open(os.path.join("netdimm", "README.md"), "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name='netdimmclient',
    version=VERSION,
    description='Client library for querying and reading memory from a SEGA Net Dimm',
    long_description=long_description,
    long_description_content_type="text/markdown",
    author='DragonMinded',
    author_email='dragonminded@dragonminded.com',
    license='Public Domain',
    url='https://github.com/DragonMinded/netboot',
    packages=[
        # Package for 3rd party.
        'netdimm',
    ],
    package_data={
        # Make sure mypy sees us as typed.
        "netdimm": ["py.typed", "README.md"],
    },
    install_requires=[
        'arcadeutils',
    ],
    extras_require={
        'test': [
            'pytest',
            'mypy',
            'flake8',
        ],
    },
    python_requires=">=3.6",
)
