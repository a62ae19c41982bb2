#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Exceptions defined by this package"""

class SsdpError(Exception):
  """Base class for all error exceptions defined by this package."""
  pass

class SsdpValidationError(SsdpError, ValueError):
  """A search or discovery parameter is out of range or of the wrong type."""
  pass

class SsdpConcurrencyError(SsdpError):
  """Discovery was started while a discovery session is already active."""
  pass

class SsdpSocketError(SsdpError):
  """The SSDP socket could not be opened, or failed while sending or receiving."""
  pass

class DescriptionFetchError(SsdpError):
  """A device description could not be retrieved over HTTP."""
  pass

class DescriptionParseError(SsdpError):
  """A device description is not well-formed XML."""
  pass
