from __future__ import annotations

import os
import random
import tempfile
import threading
import unittest
import concurrent.futures as _fut
from pathlib import Path
from typing import Dict

from dfs.constants import DFS_MAGIC, subfile_name
from dfs.crc16 import crc16
from dfs.errors import ChecksumMismatchError, ConfigurationError, FormatError, MissingSubFileError
from dfs.reader import ArchiveReader
from dfs.writer import ArchiveWriter, write_archive


def _sample_files() -> Dict[str, bytes]:
    rng = random.Random(1234)
    return {
        "AUDIO/MUSIC/TRACK9.RAW": bytes(rng.randrange(256) for _ in range(3000)),
        "AUDIO/MUSIC/TRACK10.RAW": bytes(rng.randrange(256) for _ in range(1500)),
        "AUDIO/MUSIC/TRACK11.RAW": b"",
        "SFX/BOOM.WAV": b"boom" * 100,
        "SFX/BOOM_BIG.WAV": b"BOOM" * 77,
        "README": b"read me\n",
        "DATA/.HIDDEN": b"\x00\x01\x02",
    }


def _flip(path: Path, offset: int):
    with open(path, "r+b") as fh:
        fh.seek(offset)
        original = fh.read(1)
        fh.seek(offset)
        fh.write(bytes([original[0] ^ 0xFF]))


def _tree(root: Path) -> Dict[str, bytes]:
    out = {}
    for dirpath, _dirs, files in os.walk(root):
        for fn in files:
            full = Path(dirpath) / fn
            out[full.relative_to(root).as_posix()] = full.read_bytes()
    return out


class ArchiveTests(unittest.TestCase):
    def run_with_tmpdir(self, func):
        with tempfile.TemporaryDirectory() as tmp:
            func(Path(tmp))

    def test_two_file_layout(self):
        def scenario(tmp: Path):
            archive = tmp / "T.DFS"
            hdr = write_archive(
                str(archive),
                [("A.TXT", b"aaaa"), ("B.TXT", b"bbbb")],
                sector_size=2048,
                split_size=1024 * 1024,
                chunk_size=32768,
                enable_crc=False,
            )
            self.assertEqual(hdr.subfile_count, 1)
            self.assertEqual(hdr.total_file_count, 2)
            raw = archive.read_bytes()
            self.assertEqual(len(raw), 2048)
            self.assertEqual(raw[:4], b"SFDX")
            self.assertEqual(raw[10:12], b"\x00\x00")
            self.assertEqual((tmp / "T.000").read_bytes(), b"aaaabbbb")
            with ArchiveReader(str(archive)) as r:
                h = r.header
                self.assertEqual(h.magic, DFS_MAGIC)
                self.assertEqual(h.version, 3)
                self.assertEqual(h.subfile_table_offset, 48)
                self.assertEqual(h.file_entries_offset, 56)
                self.assertEqual(h.checksum_table_offset, 0)
                self.assertEqual(h.string_table_offset, 104)
                self.assertEqual(h.string_table_length, 10)
                self.assertEqual(raw[104:114], b"\x00A\x00.TXT\x00B\x00")
                self.assertEqual([e.data_offset for e in r.entries], [0, 4])
                a, b = r.entries
                self.assertEqual((a.name_part1, a.name_part2, a.path, a.extension), (1, 0, 0, 3))
                self.assertEqual((b.name_part1, b.name_part2, b.path, b.extension), (8, 0, 0, 3))
                self.assertEqual(r.subfiles[0].offset, 8)
                self.assertEqual([(i.name, i.path, i.size) for i in r.enumerate()], [("A.TXT", "A.TXT", 4), ("B.TXT", "B.TXT", 4)])
                rep = r.verify()
                self.assertFalse(rep.has_checksum_table)
                self.assertEqual(rep.checksum, h.file_checksum)

        self.run_with_tmpdir(scenario)

    def test_roundtrip_any_order(self):
        def scenario(tmp: Path):
            files = _sample_files()
            items = sorted(files.items())
            for seed in range(4):
                random.Random(seed).shuffle(items)
                archive = tmp / f"R{seed}.DFS"
                write_archive(str(archive), items, split_size=4096, enable_crc=True)
                out = tmp / f"out{seed}"
                with ArchiveReader(str(archive)) as r:
                    self.assertEqual([i.path for i in r.enumerate()], [arc for arc, _ in items])
                    self.assertEqual(r.extract(str(out)), len(files))
                    for arc, data in files.items():
                        self.assertEqual(r.get_file(arc), data)
                    r.verify()
                self.assertEqual(_tree(out), files)

        self.run_with_tmpdir(scenario)

    def test_names_fold_to_upper_case(self):
        def scenario(tmp: Path):
            archive = tmp / "case.dfs"
            write_archive(str(archive), [("docs/readme.txt", b"hi"), ("docs/Track01.dat", b"t1")])
            self.assertTrue((tmp / "case.000").exists())
            with ArchiveReader(str(archive)) as r:
                self.assertEqual([i.path for i in r.list()], ["DOCS/README.TXT", "DOCS/TRACK01.DAT"])
                self.assertEqual(r.get_file("docs/readme.txt"), b"hi")
                self.assertEqual(r.get_file("DOCS\\README.TXT"), b"hi")
                self.assertEqual(r.get_file("track01.dat"), b"t1")
                with self.assertRaises(FileNotFoundError):
                    r.get_file("missing.txt")

        self.run_with_tmpdir(scenario)

    def test_reader_reopens_after_close(self):
        def scenario(tmp: Path):
            archive = tmp / "RE.DFS"
            write_archive(str(archive), [("A.TXT", b"first"), ("B.TXT", b"second")], enable_crc=True)
            r = ArchiveReader(str(archive))
            with r:
                self.assertEqual(r.get_file("A.TXT"), b"first")
            with self.assertRaises(RuntimeError):
                r.get_file("A.TXT")
            with r:
                self.assertEqual(r.get_file("A.TXT"), b"first")
                self.assertEqual(r.get_file("B.TXT"), b"second")
                self.assertEqual(len(r.list()), 2)
                r.verify()

        self.run_with_tmpdir(scenario)

    def test_split_limits(self):
        def scenario(tmp: Path):
            archive = tmp / "S.DFS"
            sizes = [40, 40, 40, 100, 5]
            items = [(f"F{i}.BIN", bytes([i + 1]) * n) for i, n in enumerate(sizes)]
            write_archive(str(archive), items, split_size=100)
            with ArchiveReader(str(archive)) as r:
                self.assertEqual([s.offset for s in r.subfiles], [80, 120, 220, 225])
                self.assertEqual([e.data_offset for e in r.entries], [0, 40, 80, 120, 220])
                lengths = [os.path.getsize(subfile_name(str(tmp / "S"), i)) for i in range(4)]
                self.assertTrue(all(n <= 100 for n in lengths))
                self.assertEqual(sum(lengths), r.subfiles[-1].offset)
                for arc, data in items:
                    self.assertEqual(r.get_file(arc), data)

        self.run_with_tmpdir(scenario)

    def test_oversized_file_leaves_no_output(self):
        def scenario(tmp: Path):
            archive = tmp / "BIG.DFS"
            with self.assertRaises(ConfigurationError):
                write_archive(str(archive), [("A.BIN", b"x" * 10), ("B.BIN", b"y" * 101)], split_size=100)
            self.assertEqual(sorted(os.listdir(tmp)), [])

        self.run_with_tmpdir(scenario)

    def test_sector_alignment(self):
        def scenario(tmp: Path):
            archive = tmp / "AL.DFS"
            items = [
                ("A.TXT", b"a" * 5),
                ("B.PKG", b"b" * 7),
                ("C.PKG", b"c" * 16),
                ("D.TXT", b"d" * 3),
                ("E.pkg", b"e"),
            ]
            write_archive(str(archive), items, sector_size=16, sector_aligned_extensions=[".pkg"])
            data = (tmp / "AL.000").read_bytes()
            self.assertEqual(data[5:16], b"\x00" * 11)
            with ArchiveReader(str(archive)) as r:
                self.assertEqual([e.data_offset for e in r.entries], [0, 16, 32, 48, 64])
                for arc, payload in items:
                    self.assertEqual(r.get_file(arc), payload)

        self.run_with_tmpdir(scenario)

    def test_alignment_padding_dropped_on_new_subfile(self):
        def scenario(tmp: Path):
            archive = tmp / "AL2.DFS"
            items = [("A.TXT", b"a" * 20), ("B.PKG", b"b" * 10)]
            write_archive(str(archive), items, sector_size=16, split_size=32, sector_aligned_extensions=[".PKG"])
            with ArchiveReader(str(archive)) as r:
                self.assertEqual([s.offset for s in r.subfiles], [20, 30])
                self.assertEqual([e.data_offset for e in r.entries], [0, 20])
                self.assertEqual(r.get_file("B.PKG"), b"b" * 10)

        self.run_with_tmpdir(scenario)

    def test_chunk_checksums_detect_corruption(self):
        def scenario(tmp: Path):
            payload = bytes(random.Random(7).randrange(256) for _ in range(200))
            archive = tmp / "C.DFS"
            write_archive(str(archive), [("DATA.BIN", payload)], chunk_size=64, enable_crc=True)
            with ArchiveReader(str(archive), chunk_size=64) as r:
                self.assertEqual(r.checksums, [crc16(payload[0:64]), crc16(payload[64:128]), crc16(payload[128:192])])
                rep = r.verify()
                self.assertEqual(rep.windows_verified, 3)
                self.assertEqual(rep.windows_skipped, 1)
                self.assertEqual(rep.tail_index, 192)

            # trailing partial window carries no checksum
            _flip(tmp / "C.000", 195)
            with ArchiveReader(str(archive), chunk_size=64) as r:
                r.verify()

            _flip(tmp / "C.000", 70)
            with ArchiveReader(str(archive), chunk_size=64) as r:
                with self.assertRaises(ChecksumMismatchError) as ctx:
                    r.verify()
                self.assertEqual(ctx.exception.index, 64)
                self.assertEqual(ctx.exception.subfile, 0)
                self.assertEqual(ctx.exception.expected, crc16(payload[64:128]))

        self.run_with_tmpdir(scenario)

    def test_final_full_window_is_not_verified(self):
        def scenario(tmp: Path):
            payload = bytes(range(256))
            archive = tmp / "W.DFS"
            write_archive(str(archive), [("W.BIN", payload)], chunk_size=64, enable_crc=True)
            with ArchiveReader(str(archive), chunk_size=64) as r:
                self.assertEqual(len(r.checksums), 4)
                self.assertEqual(r.verify().windows_verified, 3)
            _flip(tmp / "W.000", 200)
            with ArchiveReader(str(archive), chunk_size=64) as r:
                self.assertEqual(r.verify().tail_index, 192)

        self.run_with_tmpdir(scenario)

    def test_checksums_across_subfiles(self):
        def scenario(tmp: Path):
            items = [(f"P{i}.BIN", bytes([i * 3 + 1]) * 100) for i in range(3)]
            archive = tmp / "M.DFS"
            write_archive(str(archive), items, split_size=128, chunk_size=64, enable_crc=True)
            with ArchiveReader(str(archive), chunk_size=64) as r:
                self.assertEqual([(s.offset, s.checksum_index) for s in r.subfiles], [(100, 0), (200, 1), (300, 2)])
                self.assertEqual(len(r.checksums), 3)
                rep = r.verify()
                self.assertEqual(rep.windows_verified, 3)
            _flip(tmp / "M.001", 5)
            with ArchiveReader(str(archive), chunk_size=64) as r:
                with self.assertRaises(ChecksumMismatchError) as ctx:
                    r.verify()
                self.assertEqual(ctx.exception.index, 100)
                self.assertEqual(ctx.exception.subfile, 1)

        self.run_with_tmpdir(scenario)

    def test_alignment_padding_is_checksummed(self):
        def scenario(tmp: Path):
            items = [("A.TXT", b"a" * 10), ("B.PKG", b"b" * 200)]
            archive = tmp / "P.DFS"
            write_archive(
                str(archive), items, sector_size=32, chunk_size=64, enable_crc=True, sector_aligned_extensions=[".PKG"]
            )
            with ArchiveReader(str(archive), chunk_size=64) as r:
                self.assertEqual(r.entries[1].data_offset, 32)
                self.assertEqual(r.verify().windows_verified, 3)

        self.run_with_tmpdir(scenario)

    def test_whole_archive_checksum(self):
        def scenario(tmp: Path):
            archive = tmp / "H.DFS"
            write_archive(str(archive), list(_sample_files().items()))
            size = archive.stat().st_size
            with ArchiveReader(str(archive)) as r:
                stored = r.header.file_checksum
                self.assertLess(stored, 0x10000)
            _flip(archive, size - 1)
            with ArchiveReader(str(archive)) as r:
                with self.assertRaises(ChecksumMismatchError) as ctx:
                    r.verify()
                self.assertEqual(ctx.exception.expected, stored)
                self.assertNotEqual(ctx.exception.actual, stored)

        self.run_with_tmpdir(scenario)

    def test_deterministic_output(self):
        def scenario(tmp: Path):
            items = list(_sample_files().items())
            write_archive(str(tmp / "one" / "X.DFS"), items, enable_crc=True, split_size=4096)
            write_archive(str(tmp / "two" / "X.DFS"), items, enable_crc=True, split_size=4096)
            self.assertEqual(_tree(tmp / "one"), _tree(tmp / "two"))

        self.run_with_tmpdir(scenario)

    def test_bad_header_rejected(self):
        def scenario(tmp: Path):
            archive = tmp / "V.DFS"
            write_archive(str(archive), [("A.TXT", b"abc")])
            raw = bytearray(archive.read_bytes())
            raw[4] = 4  # version
            archive.write_bytes(bytes(raw))
            with self.assertRaises(FormatError):
                ArchiveReader(str(archive)).open()
            archive.write_bytes(b"NOTADFS!" + b"\x00" * 100)
            with self.assertRaises(FormatError):
                ArchiveReader(str(archive)).open()
            archive.write_bytes(b"XDFS")
            with self.assertRaises(FormatError):
                ArchiveReader(str(archive)).open()

        self.run_with_tmpdir(scenario)

    def test_missing_subfile(self):
        def scenario(tmp: Path):
            archive = tmp / "MS.DFS"
            write_archive(str(archive), [("A.BIN", b"a" * 60), ("B.BIN", b"b" * 60)], split_size=100)
            os.remove(tmp / "MS.001")
            with self.assertRaises(MissingSubFileError) as ctx:
                ArchiveReader(str(archive)).open()
            self.assertIsInstance(ctx.exception, FileNotFoundError)
            self.assertTrue(ctx.exception.path.endswith("MS.001"))

        self.run_with_tmpdir(scenario)

    def test_rewrite_drops_stale_subfiles(self):
        def scenario(tmp: Path):
            archive = tmp / "RW.DFS"
            write_archive(str(archive), [(f"F{i}.BIN", b"z" * 80) for i in range(4)], split_size=100)
            self.assertTrue((tmp / "RW.003").exists())
            write_archive(str(archive), [("ONLY.BIN", b"1")], split_size=100)
            self.assertEqual(sorted(os.listdir(tmp)), ["RW.000", "RW.DFS"])
            with ArchiveReader(str(archive)) as r:
                self.assertEqual(r.get_file("ONLY.BIN"), b"1")

        self.run_with_tmpdir(scenario)

    def test_empty_archive(self):
        def scenario(tmp: Path):
            archive = tmp / "E.DFS"
            hdr = write_archive(str(archive), [], enable_crc=True)
            self.assertEqual(hdr.subfile_count, 0)
            self.assertEqual(archive.stat().st_size, 2048)
            with ArchiveReader(str(archive)) as r:
                self.assertEqual(r.list(), [])
                self.assertEqual(r.verify().windows_verified, 0)

        self.run_with_tmpdir(scenario)

    def test_writer_api_with_files_and_streams(self):
        def scenario(tmp: Path):
            src = tmp / "src.bin"
            src.write_bytes(b"from disk" * 10)
            archive = tmp / "API.DFS"
            with ArchiveWriter(str(archive)) as w:
                w.add_file("DISK.BIN", str(src))
                with open(src, "rb") as fh:
                    w.add_stream("STREAM.BIN", fh)
                w.add_bytes("MEM.BIN", b"memory")
                hdr = w.finalize()
            self.assertEqual(hdr.total_file_count, 3)
            with ArchiveReader(str(archive)) as r:
                self.assertEqual(r.get_file("DISK.BIN"), src.read_bytes())
                self.assertEqual(r.get_file("STREAM.BIN"), src.read_bytes())
                self.assertEqual(r.get_file("MEM.BIN"), b"memory")

        self.run_with_tmpdir(scenario)

    def test_configuration_checks(self):
        for kwargs in (
            {"sector_size": 3},
            {"sector_size": 0},
            {"split_size": 0},
            {"chunk_size": 0},
            {"chunk_size": 1 << 32},
            {"split_size": 1 << 32},
        ):
            with self.assertRaises(ConfigurationError):
                ArchiveWriter("unused.DFS", **kwargs)
        self.assertTrue(issubclass(ConfigurationError, ValueError))

    def test_string_table_offset_limit(self):
        def scenario(tmp: Path):
            items = [(f"{i:04d}" + "X" * 96 + ".BIN", b"") for i in range(700)]
            with self.assertRaises(ConfigurationError) as ctx:
                write_archive(str(tmp / "ST.DFS"), items)
            self.assertIn("XXXX.BIN", str(ctx.exception))
            self.assertEqual(os.listdir(tmp), [])

        self.run_with_tmpdir(scenario)

    def test_non_ascii_name_rejected(self):
        def scenario(tmp: Path):
            with self.assertRaises(ValueError):
                write_archive(str(tmp / "N.DFS"), [("café.txt", b"x")])
            self.assertFalse((tmp / "N.DFS").exists())
            # upper-cases to a longer string
            with self.assertRaises(ValueError):
                write_archive(str(tmp / "N.DFS"), [("ß.txt", b"x"), ("ß.txt", b"y")])
            with self.assertRaises(ValueError):
                write_archive(str(tmp / "N.DFS"), [("A\x00B.TXT", b"x")])
            self.assertFalse((tmp / "N.DFS").exists())

            with ArchiveWriter(str(tmp / "W.DFS")) as w:
                w.add_bytes("OK.TXT", b"ok")
                with self.assertRaises(ValueError):
                    w.add_bytes("straße.txt", b"payload")
                self.assertEqual(w.split.logical, 2)
                self.assertEqual(len(w.entries), 1)
                w.finalize()
            self.assertEqual((tmp / "W.000").read_bytes(), b"ok")

        self.run_with_tmpdir(scenario)

    def test_parallel_reads(self):
        def scenario(tmp: Path):
            files = _sample_files()
            archive = tmp / "PAR.DFS"
            write_archive(str(archive), sorted(files.items()), split_size=4096)
            with ArchiveReader(str(archive)) as r:
                out = tmp / "out"
                self.assertEqual(r.extract(str(out), jobs=4), len(files))
                self.assertEqual(_tree(out), files)
                with _fut.ThreadPoolExecutor(max_workers=8) as ex:
                    names = list(files) * 5
                    for name, data in zip(names, ex.map(r.get_file, names)):
                        self.assertEqual(data, files[name])

        self.run_with_tmpdir(scenario)

    def test_extract_stops_between_files(self):
        class Stop(Exception):
            pass

        def scenario(tmp: Path):
            archive = tmp / "STOP.DFS"
            write_archive(str(archive), [("A.BIN", b"a"), ("B.BIN", b"b"), ("C.BIN", b"c")])
            seen = []
            lock = threading.Lock()

            def on_entry(info):
                with lock:
                    seen.append(info.name)
                if len(seen) == 2:
                    raise Stop()

            out = tmp / "out"
            with ArchiveReader(str(archive)) as r:
                with self.assertRaises(Stop):
                    r.extract(str(out), on_entry=on_entry)
            self.assertEqual(sorted(os.listdir(out)), ["A.BIN"])

        self.run_with_tmpdir(scenario)


if __name__ == "__main__":
    unittest.main()
