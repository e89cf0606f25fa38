"""
Auth Gateway - Mirror users, organizations and memberships into backend systems.

This package fans every provisioning operation out to a set of pluggable
backends (an HDFS directory tree and similar) under a single deadline.
"""

__version__ = "1.0.0"
__author__ = "Auth Gateway Team"
