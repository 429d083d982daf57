"""Tests for argument parsing, CLI helpers and the main entry point."""

from argparse import Namespace
from pathlib import Path
from unittest.mock import patch

import pytest
import torch

from quantchat.cli import main
from quantchat.cli_parts.common import (
    resolve_model_path,
    resolve_tokenizer_path,
    sampling_config_from_args,
)
from quantchat.cli_parts.output import print_session_summary
from quantchat.cli_parts.parser import create_parser
from quantchat.generation.session import TurnResult, TurnStats
from quantchat.runtime.weight_loader import FormatError


class _Tokenizer:
    eos_token_id = 1

    def encode(self, text):
        return [("<s>", 0)] + [(word, 2) for word in text.split()]

    def id_to_token(self, token_id):
        return {0: "<s>", 1: "</s>", 2: "▁word", 3: "▁next"}.get(token_id)


class _Model:
    max_seq_len = 4096

    def __init__(self):
        self.calls = []

    def forward(self, token_ids, position_offset):
        self.calls.append((list(token_ids), position_offset))
        logits = torch.zeros(4)
        logits[3] = 5.0
        return logits


@pytest.fixture(autouse=True)
def quiet_logging():
    with patch("quantchat.cli.setup_logging"):
        yield


class TestParser:

    def test_defaults(self):
        args = create_parser().parse_args([])
        assert args.model is None
        assert args.prompt is None
        assert args.sample_len == 100
        assert args.temperature == 0.8
        assert args.top_p is None
        assert args.seed == 299792458
        assert args.repeat_penalty == 1.1
        assert args.repeat_last_n == 64
        assert args.which == "7b"
        assert args.gqa is None
        assert args.verbose_prompt is False

    def test_short_sample_len(self):
        assert create_parser().parse_args(["-n", "5"]).sample_len == 5

    def test_rejects_unknown_model(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["--which", "3b"])


class TestHelpers:

    @staticmethod
    def _args(**overrides):
        defaults = vars(create_parser().parse_args([]))
        return Namespace(**{**defaults, **overrides})

    def test_zero_temperature_is_greedy(self):
        sampling = sampling_config_from_args(self._args(temperature=0.0))
        assert sampling.temperature is None
        assert sampling.greedy is True

    def test_sampling_options_carried(self):
        sampling = sampling_config_from_args(self._args(top_p=0.9, seed=7, repeat_last_n=16))
        assert sampling.temperature == 0.8
        assert sampling.top_p == 0.9
        assert sampling.seed == 7
        assert sampling.repeat_last_n == 16

    def test_explicit_paths_skip_download(self):
        args = self._args(model="weights.bin", tokenizer="tokenizer.json")
        with patch("quantchat.cli_parts.common.hf_hub_download") as download:
            assert resolve_model_path(args) == Path("weights.bin")
            assert resolve_tokenizer_path(args) == Path("tokenizer.json")
        download.assert_not_called()

    def test_downloads_for_model_variant(self):
        args = self._args(which="7b-mistral")
        with patch("quantchat.cli_parts.common.hf_hub_download", return_value="/cache/file") as download:
            assert resolve_model_path(args) == Path("/cache/file")
            resolve_tokenizer_path(args)

        assert download.call_args_list[0].kwargs == {
            "repo_id": "TheBloke/Mistral-7B-v0.1-GGUF",
            "filename": "mistral-7b-v0.1.Q4_K_S.gguf",
        }
        assert download.call_args_list[1].kwargs == {
            "repo_id": "mistralai/Mistral-7B-v0.1",
            "filename": "tokenizer.json",
        }


class TestMain:

    def test_list_models(self, capsys):
        assert main(["--list-models"]) == 0
        output = capsys.readouterr().out
        assert "70b-chat" in output
        assert "[mistral]" in output
        assert "Total models: 12" in output

    @pytest.mark.parametrize("argv", [["-n", "0"], ["--gqa", "0"]])
    def test_rejects_invalid_counts(self, argv):
        with pytest.raises(SystemExit):
            main(argv)

    @patch("quantchat.cli.Tokenizer")
    @patch("quantchat.cli.ModelRuntime")
    @patch("quantchat.cli.load_container")
    def test_single_shot_run(self, mock_load, mock_runtime, mock_tokenizer, capsys):
        model = _Model()
        mock_runtime.return_value.build.return_value = model
        mock_tokenizer.from_file.return_value = _Tokenizer()

        exit_code = main([
            "--model", "weights.bin", "--tokenizer", "tokenizer.json",
            "--prompt", "hello there", "-n", "3", "--temperature", "0", "--which", "70b",
        ])

        assert exit_code == 0
        mock_load.assert_called_once_with(Path("weights.bin"), gqa=None, model_name="70b")
        mock_tokenizer.from_file.assert_called_once_with(Path("tokenizer.json"), eos_token="</s>")
        assert [offset for _, offset in model.calls] == [0, 3, 4]
        output = capsys.readouterr().out
        assert output.startswith("temp: 0.00 repeat-penalty: 1.10 repeat-last-n: 64\n")
        assert "hello there next next next" in output
        assert "   3 prompt tokens processed" in output

    @patch("quantchat.cli.load_container", side_effect=FormatError("Unknown container magic 0x00000000"))
    def test_format_error_exit_code(self, mock_load, capsys):
        assert main(["--model", "broken.bin", "--tokenizer", "tokenizer.json"]) == 1
        assert "Error: Unknown container magic" in capsys.readouterr().out

    @pytest.mark.parametrize("which,prompt,template", [
        ("7b-mistral-instruct", "interactive", "[INST] {prompt} [/INST]"),
        ("7b-mistral-instruct", "tell me a story", None),
        ("70b-chat", "chat", None),
    ])
    @patch("quantchat.cli.GenerationSession")
    @patch("quantchat.cli.Tokenizer")
    @patch("quantchat.cli.ModelRuntime")
    @patch("quantchat.cli.load_container")
    def test_instruct_template_follows_family(self, mock_load, mock_runtime, mock_tokenizer,
                                              mock_session, which, prompt, template):
        mock_session.return_value.run.return_value = []
        assert main(["--model", "weights.gguf", "--tokenizer", "tokenizer.json",
                     "--which", which, "--prompt", prompt]) == 0
        assert mock_session.call_args.kwargs["instruct_template"] == template

    def test_missing_model_file(self, tmp_path, capsys):
        missing = tmp_path / "llama-2-7b.ggmlv3.q4_0.bin"
        assert main(["--model", str(missing), "--tokenizer", "tokenizer.json"]) == 1
        assert f"Error: Weight container {missing} does not exist" in capsys.readouterr().out

    @patch("quantchat.cli.ModelRuntime")
    @patch("quantchat.cli.load_container")
    def test_unexpected_build_error_exit_code(self, mock_load, mock_runtime, capsys):
        mock_runtime.return_value.build.side_effect = RuntimeError("CUDA error: out of memory")
        assert main(["--model", "weights.bin", "--tokenizer", "tokenizer.json"]) == 1
        assert "Error: CUDA error: out of memory" in capsys.readouterr().out

    @patch("quantchat.cli.load_container", side_effect=KeyboardInterrupt)
    def test_interrupt(self, mock_load):
        assert main(["--model", "weights.bin", "--tokenizer", "tokenizer.json"]) == 130


class TestSessionSummary:

    @staticmethod
    def _turn(generated, seconds, hit_eos=False):
        stats = TurnStats(prompt_tokens=4, generated_tokens=generated, prompt_seconds=0.1,
                          decode_seconds=seconds)
        return TurnResult("p", [0], [2] * generated, stats, hit_eos=hit_eos)

    def test_single_turn_prints_nothing(self, capsys):
        print_session_summary([self._turn(3, 1.0)])
        assert capsys.readouterr().out == ""

    def test_totals(self, capsys):
        print_session_summary([self._turn(3, 1.0), self._turn(5, 1.0, hit_eos=True)])
        output = capsys.readouterr().out
        assert "Turns: 2" in output
        assert "Tokens generated: 8" in output
        assert "Average generation speed: 4.00 token/s" in output
        assert "Turns ended by end-of-sequence: 1" in output
