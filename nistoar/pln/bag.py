"""
Tools for building BagIt bags that serve as deposit packages.

A :py:class:`BagBuilder` assembles the payload of a bag (under its ``data`` directory) and then,
via :py:meth:`BagBuilder.finalize`, writes the BagIt tag files:  ``bagit.txt``, ``bag-info.txt``,
``manifest-sha256.txt``, and ``tagmanifest-sha256.txt``.
"""
import os, shutil, logging
from datetime import date
from collections import OrderedDict

from .utils import checksum_of, measure_dir_size, blab
from .exceptions import StateException

BAGIT_VERSION = "1.0"
ENCODING = "UTF-8"
MANIFEST_ALG = "sha256"
DATA_DIR = "data"

class BagBuilder(object):
    """
    a class for assembling a BagIt bag in a directory
    """

    def __init__(self, bagdir, log=None):
        """
        :param str bagdir:  the root directory of the bag to build; it will be created if necessary
        :param Logger log:  the logger to send messages to
        """
        self.bagdir = bagdir
        if not log:
            log = logging.getLogger("PLN.bag")
        self.log = log
        self.info = OrderedDict()

    @property
    def datadir(self):
        return os.path.join(self.bagdir, DATA_DIR)

    def ensure_bagdir(self):
        """
        create the bag's directory (and its payload directory) if it does not exist
        """
        if not os.path.exists(self.datadir):
            os.makedirs(self.datadir)

    def _payload_path(self, relpath):
        relpath = relpath.lstrip('/')
        if '..' in relpath.split('/'):
            raise ValueError("Payload path must not contain '..': "+relpath)
        return os.path.join(self.datadir, relpath)

    def add_data_file(self, srcpath, relpath):
        """
        copy a file into the bag's payload

        :param str srcpath:  the path to the file to copy
        :param str relpath:  the destination path relative to the payload directory
        """
        self.ensure_bagdir()
        dest = self._payload_path(relpath)
        if not os.path.exists(os.path.dirname(dest)):
            os.makedirs(os.path.dirname(dest))
        blab(self.log, "Copying %s to %s", srcpath, relpath)
        shutil.copyfile(srcpath, dest)
        return dest

    def add_data_content(self, relpath, content):
        """
        write the given content into a file in the bag's payload

        :param str   relpath:  the destination path relative to the payload directory
        :param content:  the content as bytes or str
        """
        self.ensure_bagdir()
        dest = self._payload_path(relpath)
        if not os.path.exists(os.path.dirname(dest)):
            os.makedirs(os.path.dirname(dest))
        if isinstance(content, str):
            content = content.encode(ENCODING)
        with open(dest, 'wb') as fd:
            fd.write(content)
        return dest

    def set_info(self, name, value):
        """
        set a tag to be written into bag-info.txt
        """
        self.info[name] = value

    def _payload_files(self):
        out = []
        for root, subdirs, files in os.walk(self.datadir):
            subdirs.sort()
            for f in sorted(files):
                path = os.path.join(root, f)
                out.append(os.path.relpath(path, self.bagdir).replace(os.sep, '/'))
        return out

    def _write_manifest(self, name, relpaths):
        with open(os.path.join(self.bagdir, name), 'w', encoding=ENCODING) as fd:
            for rp in relpaths:
                fd.write("%s  %s\n" % (checksum_of(os.path.join(self.bagdir, rp), MANIFEST_ALG), rp))

    def finalize(self):
        """
        write out the bag's tag files
        :return:  the bag's root directory
        """
        if not os.path.isdir(self.datadir):
            raise StateException("Bag has no payload directory: "+self.bagdir)

        payload = self._payload_files()
        size, count = measure_dir_size(self.datadir)

        with open(os.path.join(self.bagdir, "bagit.txt"), 'w', encoding=ENCODING) as fd:
            fd.write("BagIt-Version: %s\nTag-File-Character-Encoding: %s\n" %
                     (BAGIT_VERSION, ENCODING))

        info = OrderedDict([("Bagging-Date", date.today().isoformat()),
                            ("Payload-Oxum", "%d.%d" % (size, count))])
        info.update(self.info)
        with open(os.path.join(self.bagdir, "bag-info.txt"), 'w', encoding=ENCODING) as fd:
            for name, val in info.items():
                fd.write("%s: %s\n" % (name, val))

        manifest = "manifest-%s.txt" % MANIFEST_ALG
        self._write_manifest(manifest, payload)
        self._write_manifest("tagmanifest-%s.txt" % MANIFEST_ALG,
                             ["bagit.txt", "bag-info.txt", manifest])
        self.log.debug("Finalized bag with %d payload files: %s", len(payload), self.bagdir)
        return self.bagdir
