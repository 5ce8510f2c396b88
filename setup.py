#!/usr/bin/env python

from setuptools import setup

import clcred

setup(name='clcred',
      version=clcred.VERSION,
      description='CL-signature anonymous credential issuance with a revocation accumulator',
      author='George Danezis',
      author_email='g.danezis@ucl.ac.uk',
      url=r'https://pypi.python.org/pypi/clcred/',
      packages=['clcred'],
      license="2-clause BSD",
      long_description="""Issuance of Camenisch-Lysyanskaya credentials over petlib big numbers, with an accumulator based revocation registry over the BN254 pairing curve""",

      setup_requires=["pytest >= 2.6.4"],
      tests_require = [
            "pytest >= 2.5.0",
            "paver >= 1.2.3",
            "pytest-cov >= 1.8.1",
            ],
      install_requires=[
            "petlib >= 0.0.45",
            "py_ecc >= 5.0.0",
            "msgpack >= 1.0.0",
            "pytest >= 2.5.0",
            "paver >= 1.2.3",
            "pytest-cov >= 1.8.1",
      ],
      extras_require={
            "test": ["pytest >= 2.5.0", "pytest-cov >= 1.8.1"],
      },
      zip_safe=False,
)
