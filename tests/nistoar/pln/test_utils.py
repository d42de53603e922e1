import os, json, pdb, hashlib, tempfile
import unittest as test

from nistoar.pln import utils, StateException

tmpdir = tempfile.TemporaryDirectory(prefix="_test_utils.")

def tearDownModule():
    tmpdir.cleanup()

class TestUtils(test.TestCase):

    def setUp(self):
        self.datafile = os.path.join(tmpdir.name, "data.txt")
        with open(self.datafile, 'w') as fd:
            fd.write("Hello world\n")

    def test_checksum_of(self):
        data = b"Hello world\n"
        self.assertEqual(utils.checksum_of(self.datafile), hashlib.sha256(data).hexdigest())
        self.assertEqual(utils.checksum_of(self.datafile, "SHA-1"), hashlib.sha1(data).hexdigest())
        self.assertEqual(utils.checksum_of(self.datafile, "MD5"), hashlib.md5(data).hexdigest())
        self.assertEqual(utils.checksum_of(self.datafile, "sha-256", 3),
                         hashlib.sha256(data).hexdigest())
        with self.assertRaises(ValueError):
            utils.checksum_of(self.datafile, "crc32")
        with self.assertRaises(ValueError):
            utils.checksum_of(self.datafile, bufsize=0)

    def test_measure_dir_size(self):
        d = os.path.join(tmpdir.name, "measure")
        os.makedirs(os.path.join(d, "sub"))
        with open(os.path.join(d, "a"), 'w') as fd:
            fd.write("12345")
        with open(os.path.join(d, "sub", "b"), 'w') as fd:
            fd.write("123")
        self.assertEqual(utils.measure_dir_size(d), (8, 2))

    def test_rmtree(self):
        d = os.path.join(tmpdir.name, "gone")
        os.makedirs(os.path.join(d, "sub"))
        with open(os.path.join(d, "sub", "b"), 'w') as fd:
            fd.write("123")
        utils.rmtree(d)
        self.assertFalse(os.path.exists(d))
        utils.rmtree(d)

    def test_read_write_json(self):
        jf = os.path.join(tmpdir.name, "data.json")
        utils.write_json({"a": 1, "b": [1, 2]}, jf)
        self.assertEqual(utils.read_json(jf), {"a": 1, "b": [1, 2]})
        self.assertEqual(utils.read_json(jf, True), {"a": 1, "b": [1, 2]})
        utils.write_json({"a": 2}, jf, nolock=True)
        self.assertEqual(utils.read_json(jf), {"a": 2})

        with self.assertRaises(StateException):
            utils.write_json({"a": 2}, os.path.join(tmpdir.name, "nodir", "data.json"), nolock=True)


if __name__ == '__main__':
    test.main()
