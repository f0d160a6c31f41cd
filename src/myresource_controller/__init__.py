"""
MyResource Controller: declarative cloud instance convergence.

Declare how many instances you want and where; the controller
drives GCP, AWS, or Azure toward that count and reports back.
"""

import os

__version__ = "0.1.0"

CONTROLLER_HOME = os.environ.get("MYRESOURCE_HOME", "~/.myresource")

API_GROUP = "devops.example.com"
API_VERSION = "v1"
KIND = "MyResource"
PLURAL = "myresources"

FINALIZER = "myresource.devops.example.com/finalizer"
