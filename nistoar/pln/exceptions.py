"""
Exceptions raised by the PLN deposit system
"""

__all__ = [
    'PLNException', 'ConfigurationException', 'StateException', 'PackagingError', 'ExportError',
    'BagSerializationError', 'PLNServiceException', 'PLNServerError', 'PLNClientError',
    'PLNResourceNotFound'
]

class PLNException(Exception):
    """
    a general base class for exceptions raised by the PLN deposit system
    """
    def __init__(self, msg=None, cause=None, sys=None):
        """
        create the exception.

        :param str   msg:  A message to override the default.
        :param Exception cause:  a caught exception that represents the underlying cause of the problem.
        :param sys:        a SystemInfo instance for the system under which the exception occurred
        """
        if not msg:
            if cause:
                msg = str(cause)
            else:
                msg = "Unknown PLN system error"
        super(PLNException, self).__init__(msg)
        self.cause = cause
        self.system = sys

class ConfigurationException(PLNException):
    """
    an exception indicating that the system is missing required configuration or is
    otherwise mis-configured.
    """
    pass

class StateException(PLNException):
    """
    an exception indicating that an entity (a deposit, a file, a directory) is in an
    unexpected state, preventing an operation.
    """
    pass

class PackagingError(PLNException):
    """
    an exception indicating that a deposit package could not be built.
    """
    def __init__(self, msg=None, deposit=None, cause=None, sys=None):
        """
        :param str      msg:  the explanation of the failure
        :param str  deposit:  the UUID of the deposit that could not be packaged
        """
        if not msg:
            msg = "Failed to package deposit"
            if deposit:
                msg += " " + str(deposit)
            if cause:
                msg += ": " + str(cause)
        super(PackagingError, self).__init__(msg, cause, sys)
        self.deposit = deposit

class ExportError(PackagingError):
    """
    an exception indicating that the content for a deposit could not be exported.
    """
    pass

class BagSerializationError(PackagingError):
    """
    an exception indicating a failure while serializing a bag into a single file.
    """
    def __init__(self, msg=None, name=None, cause=None, sys=None):
        if not msg:
            msg = "Bag serialization failure"
            if name:
                msg += " for " + name
            if cause:
                msg += ": " + str(cause)
        super(BagSerializationError, self).__init__(msg, None, cause, sys)
        self.bagname = name

class PLNServiceException(PLNException):
    """
    an exception indicating a problem using the PLN's SWORD service.
    """

    def __init__(self, resource=None, http_code=None, http_reason=None, message=None, cause=None):
        if not message:
            if resource:
                message = f"Trouble accessing {resource} from the PLN service"
            else:
                message = "Problem accessing the PLN service"
            if http_code or http_reason:
                message += ":"
                if http_code:
                    message += " "+str(http_code)
                if http_reason:
                    message += " "+str(http_reason)
            elif cause:
                message += ": "+str(cause)

        super(PLNServiceException, self).__init__(message, cause)
        self.resource = resource
        self.code = http_code
        self.status = http_reason

class PLNServerError(PLNServiceException):
    """
    an exception indicating an error occurred on the server-side (or in the network) while
    trying to access the PLN service.
    """
    pass

class PLNClientError(PLNServiceException):
    """
    an exception indicating that the PLN service rejected a request as erroneous.
    """

    def __init__(self, resource, http_code, http_reason, message=None, cause=None):
        if not message:
            message = "client-side PLN error occurred"
            if resource:
                message += " while processing " + resource
            message += ": {0} {1}".format(http_code, http_reason)

        super(PLNClientError, self).__init__(resource, http_code, http_reason, message, cause)

class PLNResourceNotFound(PLNClientError):
    """
    An error indicating that a requested resource is not available from the PLN service.
    """
    def __init__(self, resource, http_reason=None, message=None, cause=None):
        if not message:
            message = "Requested PLN resource not found"
            if resource:
                message += ": "+resource

        super(PLNResourceNotFound, self).__init__(resource, 404, http_reason, message, cause)
