"""
Utility functions for managing files and data
"""
import os, json, time, shutil, hashlib, logging
from collections import OrderedDict

import filelock

from .exceptions import StateException

log = logging.getLogger("PLN.utils")
BLAB = logging.DEBUG - 1

def blab(log, msg, *args, **kwargs):
    """
    log a verbose message. This uses a log level, BLAB, that is lower than
    DEBUG; in other words when a log's level is set to DEBUG, this message
    will not be displayed.  This is intended for messages that would appear
    voluminously if the level were set to BLAB.

    :param Logger log:  the Logger object to record to
    :param str    msg:  the message to write
    :param args:        treat msg as a template and insert these values
    :param kwargs:      other arbitrary keywords to pass to log.log()
    """
    log.log(BLAB, msg, *args, **kwargs)

_checksum_algs = {
    "sha-1": hashlib.sha1,
    "sha1": hashlib.sha1,
    "md5": hashlib.md5,
    "sha-256": hashlib.sha256,
    "sha256": hashlib.sha256
}

def checksum_of(filepath, alg="sha256", bufsize: int=10240000):
    """
    return the checksum for the given file as a hex string

    :param str|Path filepath:  the path of the file to calculate the checksum for
    :param str           alg:  the name of the hash algorithm to use; supported values are
                               "SHA-1", "MD5", and "SHA-256" (case-insensitive)
    :param int       bufsize:  the memory buffer size to use when reading the file.
                               The default is 10 MB; multithreaded applications should
                               consider a smaller value.
    """
    if not isinstance(bufsize, int):
        raise TypeError("checksum_of(): bufsize arg must be an integer")
    if bufsize < 1:
        raise ValueError("checksum_of(): bufsize arg must be a positive integer")
    hashcls = _checksum_algs.get(str(alg).lower())
    if not hashcls:
        raise ValueError("checksum_of(): unsupported checksum algorithm: "+str(alg))

    sum = hashcls()
    with open(filepath, mode='rb') as fd:
        while True:
            buf = fd.read(bufsize)
            if not buf: break
            sum.update(buf)
    return sum.hexdigest()

def measure_dir_size(dirpath):
    """
    return the total size in bytes of the files found below a directory along with the number
    of those files, as a (size, count) tuple.  This is the basis of a bag's Payload-Oxum.
    """
    sizes = [os.path.getsize(os.path.join(root, f))
             for root, subdirs, files in os.walk(dirpath) for f in files]
    return (sum(sizes), len(sizes))

def rmtree(rootdir, retries=1):
    """
    remove a directory tree, retrying once on failure (as can happen on NFS-mounted
    directories).  Nothing is done if the directory does not exist.
    """
    if not os.path.exists(rootdir):
        return
    if not os.path.isdir(rootdir):
        os.remove(rootdir)
        return

    try:
        shutil.rmtree(rootdir)
    except OSError:
        if retries <= 0:
            raise
        # wait a little for NFS to catch up
        time.sleep(0.25)
        rmtree(rootdir, retries=retries-1)

def read_json(jsonfile, nolock=False):
    """
    read the JSON data from the specified file

    :param str   jsonfile:  the path to the JSON file to read.
    :param bool  nolock:    if False (default), a lock will be aquired
                            before reading the file.  A True value reads the
                            file without a lock
    :raise IOError:  if there is an error while acquiring the lock or reading
                     the file contents
    :raise ValueError:  if JSON format errors are detected.
    """
    if nolock:
        with open(jsonfile) as fd:
            return json.load(fd, object_pairs_hook=OrderedDict)

    with filelock.FileLock(str(jsonfile)+".lock"):
        blab(log, "Acquired lock for reading: "+str(jsonfile))
        with open(jsonfile) as fd:
            out = json.load(fd, object_pairs_hook=OrderedDict)
    return out

def write_json(jsdata, destfile, indent=4, nolock=False):
    """
    write out the given JSON data into a file with pretty print formatting

    :param dict jsdata:    the JSON data to write
    :param str  destfile:  the path to the file to write the data to
    :param int  indent:    the number of characters to use for indentation
                           (default: 4).
    :param bool  nolock:   if False (default), a lock will be acquired
                           before writing to the file.  A True value writes the
                           data without a lock
    """
    try:
        if nolock:
            with open(destfile, 'w') as fd:
                json.dump(jsdata, fd, indent=indent, separators=(',', ': '))
            return

        with filelock.FileLock(str(destfile)+".lock"):
            blab(log, "Acquired lock for writing: "+str(destfile))
            with open(destfile, 'w') as fd:
                json.dump(jsdata, fd, indent=indent, separators=(',', ': '))
    except Exception as ex:
        raise StateException("{0}: Failed to write JSON data to file: {1}"
                             .format(destfile, str(ex)), cause=ex)
