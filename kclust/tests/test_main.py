from kclust.__main__ import main, make_parser


def test_parser_defaults():
    args = make_parser().parse_args([])
    assert (args.points, args.dim, args.k, args.stride) == (100_000, 3, 8, 1)
    assert not args.minibatch and not args.profile


def test_main_runs(capsys):
    assert main(["--points", "600", "--dim", "2", "--k", "3", "--threads", "2", "--profile"]) == 0
    out = capsys.readouterr().out
    assert "generated 600 points of dim 2" in out
    assert "converged after" in out
    assert "Stage" in out and "assign" in out


def test_main_minibatch(capsys):
    assert main(["--points", "600", "--k", "4", "--minibatch", "--batch-size", "100", "--kernel", "scalar"]) == 0
    assert "completed after 6 iterations" in capsys.readouterr().out


if __name__ == "__main__":
    test_parser_defaults()
