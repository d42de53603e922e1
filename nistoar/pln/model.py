"""
The records tracked by the PLN deposit system:  :py:class:`Deposit` (one archival unit sent to
the network) and :py:class:`DepositObject` (a link from one piece of a tenant's content to the
Deposit that packages it).

A Deposit's milestone flags may only be changed via its mutator methods (e.g.
:py:meth:`Deposit.set_packaged`, :py:meth:`Deposit.reset_to_new`,
:py:meth:`Deposit.apply_remote_state`); the raw status value is read-only.
"""
import uuid as _uuid
from datetime import datetime, timezone
from collections.abc import Mapping
from typing import List

from . import status as sts
from .status import DepositStatus

ISSUE = "Issue"
SUBMISSION = "Submission"
CONTENT_KINDS = (ISSUE, SUBMISSION)

def now():
    """
    return the current time as a timezone-aware datetime
    """
    return datetime.now(timezone.utc)

def _fmt_date(dt):
    if dt is None:
        return None
    return dt.isoformat()

def _parse_date(val):
    if val is None or isinstance(val, datetime):
        return val
    return datetime.fromisoformat(val)

class Deposit(object):
    """
    a record describing one archival deposit and its progress through packaging, transfer, and
    preservation by the network.

    :ivar int            id:  the local identifier, assigned by the repository
    :ivar str          uuid:  the globally unique identifier used for the deposit by the network
    :ivar          tenant_id: the identifier of the tenant that owns the deposit
    :ivar str   object_kind:  the kind of content this deposit packages (``Issue`` or ``Submission``)
    :ivar str staging_state:  the last processing state reported by the network (informational)
    :ivar str  lockss_state:  the last LOCKSS state reported by the network (informational)
    :ivar str  export_error:  the last failure message, or None if the last operation succeeded
    :ivar datetime status_date:  the last time the status was changed or checked
    :ivar datetime   preserved:  the time durable preservation was confirmed
    """

    def __init__(self, tenant_id, object_kind=ISSUE, uuid=None, id=None):
        self.id = id
        self.uuid = uuid or str(_uuid.uuid4())
        self.tenant_id = tenant_id
        self.object_kind = object_kind
        self._status = DepositStatus.NEW
        self.staging_state = None
        self.lockss_state = None
        self.export_error = None
        self.status_date = None
        self.created = now()
        self.modified = self.created
        self.preserved = None

    @property
    def status(self) -> DepositStatus:
        """
        the milestones reached by this deposit
        """
        return self._status

    # derived views
    @property
    def new(self) -> bool:
        return sts.is_new(self._status)

    @property
    def packaged(self) -> bool:
        return self._status.has(DepositStatus.PACKAGED)

    @property
    def transferred(self) -> bool:
        return self._status.has(DepositStatus.TRANSFERRED)

    @property
    def received(self) -> bool:
        return self._status.has(DepositStatus.RECEIVED)

    @property
    def validated(self) -> bool:
        return self._status.has(DepositStatus.VALIDATED)

    @property
    def sent(self) -> bool:
        return self._status.has(DepositStatus.SENT)

    @property
    def lockss_received(self) -> bool:
        return self._status.has(DepositStatus.LOCKSS_RECEIVED)

    @property
    def lockss_agreement(self) -> bool:
        return self._status.has(DepositStatus.LOCKSS_AGREEMENT)

    @property
    def ready_to_package(self) -> bool:
        return sts.ready_to_package(self._status)

    @property
    def ready_to_transfer(self) -> bool:
        return sts.ready_to_transfer(self._status)

    @property
    def ready_for_remote_update(self) -> bool:
        return sts.ready_for_remote_update(self._status)

    # mutators
    def reset_to_new(self):
        """
        forget all progress:  clear all milestones, the error message, the remote states, and
        the status date.  This forces the deposit to be repackaged and retransferred.
        """
        self._status = DepositStatus.NEW
        self.export_error = None
        self.staging_state = None
        self.lockss_state = None
        self.status_date = None
        self.preserved = None

    def set_packaged(self):
        """
        record that the bag and metadata document were built successfully
        """
        self._status |= DepositStatus.PACKAGED
        self.export_error = None
        self.stamp_status()

    def set_transferred(self):
        """
        record that the metadata document was accepted by the network
        """
        self._status |= DepositStatus.TRANSFERRED
        self.export_error = None
        self.stamp_status()

    def record_error(self, message):
        """
        record a failure message without changing the milestones
        """
        self.export_error = message or None

    def stamp_status(self, when=None):
        """
        set the status date to now (or the given time)
        """
        self.status_date = when or now()

    def apply_remote_state(self, processing, lockss) -> List[str]:
        """
        update the milestones from the processing and LOCKSS states reported by the network.
        Each recognized state replaces the milestone flags with those given by the look-up tables
        in :py:mod:`~nistoar.pln.status`; LOCKSS milestones already reached are retained.  An
        unrecognized state leaves the flags unchanged and is recorded in the error message.
        The status date is stamped regardless of the outcome.

        :param str processing:  the processing state token
        :param str     lockss:  the LOCKSS state token
        :return:  the list of error messages recorded (empty if there were none)
        """
        errors = []
        self.staging_state = processing
        self.lockss_state = lockss

        bits = sts.processing_status_for(processing)
        if bits is None:
            errors.append("Unrecognized processing state reported by the network: %s" % processing)
        else:
            lockss_bits = self._status & (DepositStatus.LOCKSS_RECEIVED|DepositStatus.LOCKSS_AGREEMENT)
            self._status = DepositStatus(bits | lockss_bits)
            if processing in sts.STATE_ERROR_MESSAGES:
                errors.append(sts.STATE_ERROR_MESSAGES[processing])

        try:
            bits = sts.lockss_status_for(lockss)
            if bits is not None:
                self._status = DepositStatus(self._status | bits)
                if self._status.has(DepositStatus.LOCKSS_AGREEMENT) and not self.preserved:
                    self.preserved = now()
        except KeyError:
            errors.append("Unrecognized LOCKSS state reported by the network: %s" % lockss)

        self.export_error = "; ".join(errors) if errors else None
        self.stamp_status()
        return errors

    # human-readable labels
    @property
    def local_status(self) -> str:
        if self.transferred:
            return "transferred"
        if self.packaged:
            return "packaged"
        if self.export_error:
            return "packaging failed"
        return "new"

    @property
    def processing_status(self) -> str:
        if self.sent:
            return "sent"
        if self.validated:
            return "validated"
        if self.received:
            return "received"
        return "unknown"

    @property
    def lockss_status(self) -> str:
        if self.lockss_agreement:
            return "agreement"
        if self.lockss_received:
            return "received"
        return "unknown"

    @property
    def displayed_status(self) -> str:
        if self.export_error:
            return "error"
        if self.lockss_agreement:
            return "completed"
        if self.new:
            return "pending"
        return "in progress"

    def object_id(self, objects):
        """
        return the content identifier of the first member of this deposit
        :param DepositObjectRepository objects:  the repository holding the deposit's members
        """
        for obj in objects.find_by_deposit(self.id):
            return obj.content_id
        return None

    def touch(self):
        self.modified = now()

    def to_dict(self):
        """
        return the contents of this record as a JSON-serializable dictionary
        """
        return {
            "id": self.id,
            "uuid": self.uuid,
            "tenant_id": self.tenant_id,
            "object_kind": self.object_kind,
            "status": int(self._status),
            "staging_state": self.staging_state,
            "lockss_state": self.lockss_state,
            "export_error": self.export_error,
            "status_date": _fmt_date(self.status_date),
            "created": _fmt_date(self.created),
            "modified": _fmt_date(self.modified),
            "preserved": _fmt_date(self.preserved)
        }

    @classmethod
    def from_dict(cls, data: Mapping):
        """
        restore a Deposit from the dictionary created by :py:meth:`to_dict`
        """
        out = cls(data['tenant_id'], data.get('object_kind', ISSUE), data['uuid'], data.get('id'))
        out._status = sts.as_status(data.get('status'))
        out.staging_state = data.get('staging_state')
        out.lockss_state = data.get('lockss_state')
        out.export_error = data.get('export_error')
        out.status_date = _parse_date(data.get('status_date'))
        out.created = _parse_date(data.get('created'))
        out.modified = _parse_date(data.get('modified'))
        out.preserved = _parse_date(data.get('preserved'))
        return out

    def __repr__(self):
        return "Deposit(%s, uuid=%s, tenant=%s, status=%d)" % \
            (self.id, self.uuid, self.tenant_id, int(self._status))

class DepositObject(object):
    """
    a link between one piece of tenant content and the deposit that packages it.

    :ivar          tenant_id:  the tenant that owns the content
    :ivar         content_id:  the identifier of the content item
    :ivar str           kind:  the kind of content (``Issue`` or ``Submission``)
    :ivar int     deposit_id:  the local identifier of the deposit, or None if not yet batched
    :ivar datetime  modified:  the content's modification time as last observed
    """

    def __init__(self, tenant_id, content_id, kind, deposit_id=None, modified=None, id=None):
        self.id = id
        self.tenant_id = tenant_id
        self.content_id = content_id
        self.kind = kind
        self.deposit_id = deposit_id
        self.created = now()
        self.modified = modified or self.created

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "content_id": self.content_id,
            "kind": self.kind,
            "deposit_id": self.deposit_id,
            "created": _fmt_date(self.created),
            "modified": _fmt_date(self.modified)
        }

    @classmethod
    def from_dict(cls, data: Mapping):
        out = cls(data['tenant_id'], data['content_id'], data['kind'], data.get('deposit_id'),
                  _parse_date(data.get('modified')), data.get('id'))
        out.created = _parse_date(data.get('created'))
        return out

    def __repr__(self):
        return "DepositObject(%s, %s %s, deposit=%s)" % \
            (self.id, self.kind, self.content_id, self.deposit_id)
