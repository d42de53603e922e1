"""
Delivery of notifications to a tenant's managers.

The deposit system raises a notification when a condition requires a human's attention
(e.g. new terms of use must be agreed to).  Delivery is handled by a :py:class:`Notifier`
implementation supplied by the host application; :py:class:`LogNotifier` simply records the
notifications in the log.
"""
import logging
from abc import ABC, abstractmethod

TERMS_UPDATED = "TERMS_UPDATED"
ISSN_MISSING  = "ISSN_MISSING"
HTTP_ERROR    = "HTTP_ERROR"
ZIP_MISSING   = "ZIP_MISSING"

messages = {
    TERMS_UPDATED: "The PLN's terms of use have been updated and must be agreed to before "
                   "deposits can resume",
    ISSN_MISSING:  "The journal must have an ISSN before content can be deposited to the PLN",
    HTTP_ERROR:    "The PLN could not be contacted",
    ZIP_MISSING:   "The zip command is not available on the server; deposits cannot be packaged"
}

class Notifier(ABC):
    """
    an interface for notifying a tenant's managers about events needing their attention
    """

    @abstractmethod
    def notify_managers(self, tenant_id, event: str):
        """
        send a notification to the managers of the given tenant.  Failures are not reported
        to the caller.
        """
        raise NotImplementedError()

class LogNotifier(Notifier):
    """
    a Notifier that records notifications as log messages
    """

    def __init__(self, log: logging.Logger=None):
        if not log:
            log = logging.getLogger("PLN.notify")
        self.log = log
        self.sent = []

    def notify_managers(self, tenant_id, event: str):
        self.sent.append((tenant_id, event))
        self.log.warning("Notice for managers of tenant %s: %s", tenant_id,
                         messages.get(event, event))
