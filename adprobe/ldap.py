# This file is here so that we can patch the ldap module in our tests.
# python-ldap-faker patches ``initialize`` on the ``ldap`` attribute of the
# modules it is told about, so everything in adprobe talks to python-ldap
# through this module.
import ldap
from ldap import *  # noqa: F403

__version__ = ldap.__version__
