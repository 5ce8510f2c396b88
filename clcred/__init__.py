# The clcred version
VERSION = '0.1.0'

import logging

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = ["constants", "errors", "helpers", "pairing", "proof", "encode", "pack",
           "schema", "values", "keys", "prover", "issuer", "revocation", "tails"]

def run_tests():
    # These are only needed in case we test
    import pytest
    import os.path
    import glob

    # List all clcred files in the directory
    clcred_dir = os.path.dirname(os.path.realpath(__file__))
    pyfiles = glob.glob(os.path.join(clcred_dir, '*.py'))

    # Run the test suite
    print("Directory: %s" % pyfiles)
    res = pytest.main(["-v", "-x"] + pyfiles)
    print("Result: %s" % res)

    # Return exit result
    return res
