"""Console entry point that prints the descriptor built for a model."""
from __future__ import annotations

import argparse
import json
import logging
import sys

from .errors import InvalidConfiguration
from .loader import LoaderInputs
from .loader import load_descriptor
from .reports import build_report


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=("Build the capability descriptor for a Hugging Face "
                     "model and report its shard layout and cache footprint."))
    parser.add_argument("--model",
                        required=True,
                        help="Hugging Face model repo or local path")
    parser.add_argument("--revision",
                        default=None,
                        help="Specific HF revision (branch, tag, commit)")
    parser.add_argument("--trust-remote-code",
                        action="store_true",
                        help="Allow models that ship custom code")
    parser.add_argument("--tp",
                        "--tensor-parallelism",
                        dest="tensor_parallelism",
                        type=int,
                        default=1,
                        help="Tensor-parallel shard factor")
    parser.add_argument("--pp",
                        "--pipeline-parallelism",
                        dest="pipeline_parallelism",
                        type=int,
                        default=1,
                        help="Pipeline-parallel shard factor")
    parser.add_argument("--dtype", default=None, help="Override the model dtype")
    parser.add_argument("--kv-cache-dtype",
                        default=None,
                        help="Quantize the KV cache (fp8 or int8)")
    parser.add_argument("--max-batch-size", type=int, default=1)
    parser.add_argument("--max-beam-width", type=int, default=1)
    parser.add_argument("--max-input-len", type=int, default=0)
    parser.add_argument("--max-seq-len",
                        dest="max_sequence_len",
                        type=int,
                        default=None,
                        help="Maximum sequence length (default: model context length)")
    parser.add_argument("--max-num-tokens", type=int, default=None)
    parser.add_argument("--tokens-per-block", type=int, default=64)
    parser.add_argument("--max-prompt-embedding-table-size", type=int, default=0)
    parser.add_argument("--max-draft-len", type=int, default=0)
    parser.add_argument("--lora-target-modules",
                        nargs="*",
                        default=[],
                        help="LoRA module names, e.g. attn_qkv mlp_h_to_4h")
    parser.add_argument("--max-lora-rank", type=int, default=0)
    parser.add_argument("--no-paged-kv-cache",
                        dest="use_paged_kv_cache",
                        action="store_false",
                        help="Use contiguous KV cache buffers")
    parser.add_argument("--no-packed-input",
                        dest="use_packed_input",
                        action="store_false",
                        help="Use padded instead of packed inputs")
    parser.add_argument("--json",
                        action="store_true",
                        help="Emit results as JSON instead of a table")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def main(args: list[str] | None = None) -> int:
    parser = _build_arg_parser()
    parsed = parser.parse_args(args)
    if parsed.verbose:
        logging.basicConfig(level=logging.DEBUG)

    inputs = LoaderInputs(model_id=parsed.model,
                          revision=parsed.revision,
                          trust_remote_code=parsed.trust_remote_code,
                          dtype=parsed.dtype,
                          kv_cache_dtype=parsed.kv_cache_dtype,
                          max_batch_size=parsed.max_batch_size,
                          max_beam_width=parsed.max_beam_width,
                          max_input_len=parsed.max_input_len,
                          max_sequence_len=parsed.max_sequence_len,
                          max_num_tokens=parsed.max_num_tokens,
                          tokens_per_block=parsed.tokens_per_block,
                          max_prompt_embedding_table_size=parsed.
                          max_prompt_embedding_table_size,
                          max_draft_len=parsed.max_draft_len,
                          use_packed_input=parsed.use_packed_input,
                          use_paged_kv_cache=parsed.use_paged_kv_cache,
                          lora_target_modules=parsed.lora_target_modules,
                          max_lora_rank=parsed.max_lora_rank)

    try:
        descriptor = load_descriptor(inputs)
        report = build_report(parsed.model, descriptor,
                              tensor_parallelism=parsed.tensor_parallelism,
                              pipeline_parallelism=parsed.pipeline_parallelism)
    except InvalidConfiguration as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    if parsed.json:
        print(json.dumps(report.as_dict(), indent=2))
    else:
        print(report.render_table())

    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
