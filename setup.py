from setuptools import setup, find_packages

from audittrail import __version__
from audittrail import __description__
from audittrail import __doc__ as __long_description__

setup(
    name = 'audittrail',
    version = __version__,
    packages = find_packages(),
    install_requires = [
        'SQLAlchemy>=2.0',
        ],
    extras_require = {
        'test': ['pytest'],
        },
    python_requires = '>=3.8',

    # metadata for upload to PyPI
    author = "The audittrail contributors",
    description = __description__,
    long_description = __long_description__,
    license = "MIT",
    keywords = "versioning audit history sqlalchemy orm",
    zip_safe = False,
    classifiers = [
        'Development Status :: 4 - Beta',
        'Environment :: Console',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
        'Programming Language :: Python',
        'Programming Language :: Python :: 3',
        'Topic :: Database',
        'Topic :: Software Development :: Libraries :: Python Modules'],
)
