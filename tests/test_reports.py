import json

import pytest
from transformers import GPT2Config

from model_descriptor.cli import main
from model_descriptor.errors import InvalidConfiguration
from model_descriptor.reports import build_report


def test_build_report(gpt_builder):
    gpt_builder.use_gpt_attention_plugin = True
    gpt_builder.use_packed_input = True
    gpt_builder.use_paged_kv_cache = True
    report = build_report("gpt-test", gpt_builder.build(),
                          tensor_parallelism=2, pipeline_parallelism=4)
    payload = report.as_dict()
    assert payload["layout"]["attention_layers"] == 6
    assert payload["layout"]["kv_heads"] == 8
    assert payload["layout"]["padded_vocab_size"] == 50258
    assert payload["capabilities"]["inflight_batching"] is True
    assert payload["limits"]["max_tokens_per_step"] == 1
    table = report.render_table()
    assert "Model: gpt-test" in table
    assert "inflight_batching" in table


def test_build_report_rejects_uneven_pipeline(gpt_builder):
    with pytest.raises(InvalidConfiguration):
        build_report("gpt-test", gpt_builder.build(), pipeline_parallelism=5)


@pytest.fixture
def gpt2_dir(tmp_path):
    GPT2Config().save_pretrained(tmp_path)
    return tmp_path


def test_cli_json(gpt2_dir, capsys):
    exit_code = main(["--model", str(gpt2_dir), "--tp", "2", "--pp", "4",
                      "--kv-cache-dtype", "int8", "--json"])
    assert exit_code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["variant"] == "gpt"
    assert payload["kv_cache_dtype"] == "int8"
    assert payload["layout"]["attention_layers"] == 3
    assert payload["limits"]["max_sequence_len"] == 1024
    assert payload["capabilities"]["inflight_batching"] is True


def test_cli_table(gpt2_dir, capsys):
    assert main(["--model", str(gpt2_dir), "--no-paged-kv-cache"]) == 0
    out = capsys.readouterr().out
    assert "Variant           : gpt" in out
    assert "inflight_batching" not in out


def test_cli_reports_invalid_configuration(gpt2_dir, capsys):
    assert main(["--model", str(gpt2_dir), "--pp", "5"]) == 2
    assert "num_attention_layers" in capsys.readouterr().err


@pytest.mark.parametrize("kv_cache_dtype, expected", [
    ("fp8_e4m3", "float8_e4m3fn"),
    ("fp8_e5m2", "float8_e4m3fn"),
])
def test_cli_accepts_common_kv_cache_spellings(gpt2_dir, capsys, kv_cache_dtype,
                                               expected):
    assert main(["--model", str(gpt2_dir), "--kv-cache-dtype", kv_cache_dtype,
                 "--json"]) == 0
    assert json.loads(capsys.readouterr().out)["kv_cache_dtype"] == expected


def test_cli_auto_kv_cache_uses_model_dtype(gpt2_dir, capsys):
    assert main(["--model", str(gpt2_dir), "--kv-cache-dtype", "auto", "--json"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["kv_cache_dtype"] == payload["dtype"]


def test_cli_rejects_unknown_dtype(gpt2_dir, capsys):
    assert main(["--model", str(gpt2_dir), "--dtype", "float128"]) == 2
    assert "dtype" in capsys.readouterr().err
