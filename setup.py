"""Setup module for building crosshmm."""


import numpy as np
from Cython.Build import cythonize
from setuptools import Extension, find_packages, setup

extensions = [
    Extension(
        "crosshmm_utils",
        ["crosshmm/crosshmm_utils.pyx"],
        include_dirs=[np.get_include()],
    )
]

setup_args = dict(
    name="crosshmm",
    version="0.1.0",
    description="HMM genotype reconstruction and map estimation for experimental crosses",
    packages=find_packages(exclude=["tests"]),
    python_requires=">=3.8",
    install_requires=["numpy", "scipy", "pandas", "click"],
    extras_require={"test": ["pytest", "hypothesis"]},
    entry_points={
        "console_scripts": [
            "crosshmm=crosshmm.cli:main",
            "crosshmm-sim=crosshmm.simulate_cli:main",
        ]
    },
    ext_modules=cythonize(
        extensions, compiler_directives={"language_level": 3, "profile": False}
    ),
)
setup(**setup_args)
