"""
Tools for serializing bags into single files
"""
import subprocess as sp
import logging, os, shutil

from .exceptions import BagSerializationError, StateException
from . import system as _sys

ZIP_CMD = "zip"

def has_archiver():
    """
    return True if the command used to serialize bags is available on this host
    """
    return shutil.which(ZIP_CMD) is not None

def _exec(cmd, dir, log):
    log.info("serializing bag: %s", ' '.join(cmd))

    proc = sp.Popen(cmd, stdout=sp.PIPE, stderr=sp.PIPE, cwd=dir)
    out, err = [s.strip() for s in proc.communicate()]
    if out:
        log.debug("%s:\n%s", cmd[0], out)

    if proc.returncode > 0:
        log.error("%s exited with error (%d): %s", cmd[0], proc.returncode, err)
        raise sp.CalledProcessError(proc.returncode, cmd, err)

# the zip exit codes that can arise when writing a new archive from a directory
zip_error = {
    '14': "error writing to a file",
    '15': "zip was unable to create a file to write to",
    '18': "zip could not open a specified file to read",
    '6':  "component file too large"
}

def zip_serialize(bagdir, destdir, log, destfile=None):
    """
    serialize a bag with zip.  The bag's directory becomes the single top-level
    directory within the zip file.

    :param bagdir   str:  path to the bag root directory to be serialized
    :param destdir  str:  path to the output directory to write serialized
                             file to.
    :param log   Logger:  a logger to write messages to
    :param destfile str:  the name to give to the serialized file.  If not
                             provided, one will be constructed from the
                             bag directory name (and an appropriate extension)
    :return:  the path to the serialized file
    :raise BagSerializationError:  if the zip command fails
    """
    parent, name = os.path.split(os.path.abspath(bagdir))
    if not destfile:
        destfile = name+'.zip'
    destfile = os.path.join(destdir, destfile)

    if not os.path.exists(bagdir):
        raise StateException("Can't serialize missing bag directory: "+bagdir)
    if not os.path.exists(destdir):
        raise StateException("Can't serialize to missing destination directory: "
                             +destdir)
    if os.path.exists(destfile):
        os.remove(destfile)

    cmd = [ZIP_CMD, "-qr", os.path.abspath(destfile), name]
    try:
        _exec(cmd, parent, log)
    except (sp.CalledProcessError, OSError) as ex:
        if os.path.exists(destfile):
            os.remove(destfile)
        message = None
        if isinstance(ex, sp.CalledProcessError):
            message = zip_error.get(str(ex.returncode))
        if not message:
            message = "Bag serialization failure using zip (consult log)"
        raise BagSerializationError(message, name, ex, sys=_sys)

    return destfile
