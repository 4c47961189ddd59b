'''Errors raised by audittrail.

Correctness failures (a mutation that could not be audited) raise and abort
the caller's transaction. Degraded conditions are logged and recovered from
where they occur, or reported as warnings.
'''


class AuditTrailError(Exception):
    pass


class RecordingFailure(AuditTrailError):
    '''A Version could not be written.

    Raised from inside the session flush so the enclosing transaction is
    rolled back together with the mutation it was meant to record.
    '''

    def __init__(self, item_type, item_id, event, reason):
        self.item_type = item_type
        self.item_id = item_id
        self.event = event
        self.reason = reason
        msg = 'Unable to record %s of %s %s: %s' % (event, item_type, item_id,
                reason)
        super(RecordingFailure, self).__init__(msg)


class ReificationFailure(AuditTrailError):
    '''A past state could not be rebuilt at all.

    Attributes that have since disappeared from the schema do not raise this;
    they are skipped.
    '''


class PolicyConfigurationError(AuditTrailError):
    '''Versioning options for a model are unknown or contradict each other.'''


class ScopeMisuseWarning(UserWarning):
    '''The legacy process-wide actor setter was used.'''
