import pytest

import main


def parse(*argv):
    return main.build_parser().parse_args(list(argv))


def test_overrides_apply_on_top_of_defaults():
    args = parse("-c", "5", "-t", "3", "-ua", "probe/1.0", "-r", "1.1.1.1,8.8.8.8",
                 "--include", "example.com", "--include", "*.example.org", "-vv", "example.com")

    config = main.build_config(args)

    assert config.crawler.concurrency == 5
    assert config.crawler.timeout == 3.0
    assert config.crawler.user_agent == "probe/1.0"
    assert config.crawler.resolvers == ["1.1.1.1", "8.8.8.8"]
    assert config.crawler.include == ["example.com", "*.example.org"]
    assert config.crawler.delay == 0.0
    assert config.logging.verbose == 2


def test_overrides_apply_on_top_of_config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("crawler:\n  concurrency: 7\n  delay: 0.5\n", encoding="utf-8")

    config = main.build_config(parse("--config", str(path), "-d", "1", "example.com"))

    assert config.crawler.concurrency == 7
    assert config.crawler.delay == 1.0


def test_read_targets_from_arguments_and_file(tmp_path):
    infile = tmp_path / "targets.txt"
    infile.write_text("one.example.com\n\n  two.example.com  \n", encoding="utf-8")

    targets = main.read_targets(parse("-i", str(infile), "zero.example.com"))

    assert targets == ["zero.example.com", "one.example.com", "two.example.com"]


@pytest.mark.parametrize(
    "argv",
    [
        ["--config", "does-not-exist.yaml", "example.com"],
        ["-c", "0", "example.com"],
        ["-d", "-1", "example.com"],
    ],
)
def test_configuration_errors_exit_with_1(argv, capsys):
    assert main.main(argv) == 1
    assert "Error:" in capsys.readouterr().err


def test_version(capsys):
    with pytest.raises(SystemExit) as exc:
        main.main(["--version"])

    assert exc.value.code == 0
    assert "recrawl" in capsys.readouterr().out
