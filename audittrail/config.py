'''Process wide configuration.

Options that apply to a single model are given to
:func:`audittrail.sqlalchemy.make_versioned` instead.
'''


class Config(dict):
    '''Dictionary of process wide settings with defaults.

    enabled: master switch. When False nothing is recorded anywhere.
    timestamp_attribute: name of the entity attribute holding its own "last
        modified" time. Versions for create and update events copy it into
        created_at.
    version_table: name of the table Version rows are written to.
    actor_max_length: actors longer than this are truncated.
    '''

    defaults = {
        'enabled': True,
        'timestamp_attribute': 'updated_at',
        'version_table': 'versions',
        'actor_max_length': 255,
        }

    def __init__(self, **overrides):
        super(Config, self).__init__()
        self.reset()
        self.update(overrides)

    def reset(self):
        self.clear()
        self.update(self.defaults)


config = Config()
