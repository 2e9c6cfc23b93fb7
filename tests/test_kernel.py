import pytest

from npdstats.kernel import (
    CmdlineArg,
    Module,
    cmdline_args,
    contains_module,
    module_from_dict,
    modules,
    read_file_into_lines,
    split_cmdline,
)

COS_CMDLINE = (
    "BOOT_IMAGE=/syslinux/vmlinuz.A init=/usr/lib/systemd/systemd boot=local rootwait ro "
    "noresume loglevel=7 console=tty1 console=ttyS0 cros_efi dm_verity.error_behavior=3 "
    'dm="1 vroot none ro 1,0 4077568 verity payload=PARTUUID=00000000-0000-0000-0000-000000000000 '
    "hashtree=PARTUUID=00000000-0000-0000-0000-000000000000 hashstart=4077568 alg=sha256\"\n"
)

SAMPLE_CMDLINE = 'key1=value1 key2 key3="value2 value3"\n'

MODULES_COS = (
    "crypto_simd 16384 1 aesni_intel, Live 0x0000000000000000\n"
    "virtio_balloon 24576 0 - Live 0x0000000000000000\n"
    "cryptd 24576 1 crypto_simd, Live 0x0000000000000000\n"
    "loadpin_trigger 12288 0 - Live 0x0000000000000000 (O)\n"
)

MODULES_UBUNTU = (
    "drm 491520 0 - Live 0x0000000000000000\n"
    "virtio_rng 16384 0 - Live 0x0000000000000000\n"
    "x_tables 40960 1 ip_tables, Live 0x0000000000000000\n"
    "autofs4 45056 2 - Live 0x0000000000000000\n"
)


def _write(tmp_path, name, content):
    path = tmp_path / name
    path.write_text(content)
    return str(path)


def test_cmdline_cos(tmp_path):
    args = cmdline_args(_write(tmp_path, "cmdline", COS_CMDLINE))
    for expected in (
        CmdlineArg("console", "ttyS0"),
        CmdlineArg("boot", "local"),
        CmdlineArg("cros_efi"),
    ):
        assert expected in args
    for unexpected in (CmdlineArg("hashstart", "4077568"), CmdlineArg("vroot")):
        assert unexpected not in args


def test_cmdline_sample(tmp_path):
    args = cmdline_args(_write(tmp_path, "cmdline", SAMPLE_CMDLINE))
    assert args == [
        CmdlineArg("key1", "value1"),
        CmdlineArg("key2"),
        CmdlineArg("key3", "value2 value3"),
    ]
    assert CmdlineArg("value2", "value3") not in args
    assert CmdlineArg("value3") not in args


def test_cmdline_skips_words_starting_with_quote(tmp_path):
    args = cmdline_args(_write(tmp_path, "cmdline", '"quoted word" key=v\n'))
    assert args == [CmdlineArg("key", "v")]


def test_cmdline_empty_file_raises(tmp_path):
    with pytest.raises(ValueError):
        cmdline_args(_write(tmp_path, "cmdline", ""))


def test_cmdline_missing_file_raises(tmp_path):
    with pytest.raises(OSError):
        cmdline_args(str(tmp_path / "missing"))


def test_split_cmdline_keeps_quoted_spaces():
    assert split_cmdline('a  b="c d" e') == ["a", 'b="c d"', "e"]


def test_cmdline_arg_string():
    assert str(CmdlineArg(key="test", value="test")) == '{"key":"test","value":"test"}'


def test_modules_cos(tmp_path):
    assert modules(_write(tmp_path, "modules", MODULES_COS)) == [
        Module("crypto_simd", 1, False, False, False),
        Module("virtio_balloon", 0, False, False, False),
        Module("cryptd", 1, False, False, False),
        Module("loadpin_trigger", 0, False, True, False),
    ]


def test_modules_ubuntu(tmp_path):
    assert modules(_write(tmp_path, "modules", MODULES_UBUNTU)) == [
        Module("drm", 0),
        Module("virtio_rng", 0),
        Module("x_tables", 1),
        Module("autofs4", 2),
    ]


def test_modules_taint_flags_and_bad_instances(tmp_path):
    content = "nv 100 x - Live 0x0 (POE)\n"
    assert modules(_write(tmp_path, "modules", content)) == [
        Module("nv", 0, proprietary=True, out_of_tree=True, unsigned=True)
    ]


def test_modules_malformed_line_raises(tmp_path):
    with pytest.raises(ValueError):
        modules(_write(tmp_path, "modules", "short 1\n"))


def test_module_string():
    module = Module(module_name="test", instances=2)
    assert str(module) == (
        '{"moduleName":"test","instances":2,"proprietary":false,'
        '"outOfTree":false,"unsigned":false}'
    )


def test_module_from_dict_round_trip():
    module = Module("ext4", 3, proprietary=False, out_of_tree=True, unsigned=True)
    assert module_from_dict(module.to_dict()) == module


def test_contains_module():
    known = [Module("a"), Module("b")]
    assert contains_module("b", known) is True
    assert contains_module("c", known) is False


def test_read_file_into_lines_strips_terminators(tmp_path):
    path = tmp_path / "f"
    path.write_bytes(b"one\r\ntwo\nthree")
    assert read_file_into_lines(str(path)) == ["one", "two", "three"]