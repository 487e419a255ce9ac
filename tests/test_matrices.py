import io

import numpy as np
import pytest

from conv_client.errors import MatrixSizeError
from conv_client.matrices import (
    format_matrix,
    generate_matrix,
    manual_matrix,
    prompt_matrix_values,
)


@pytest.mark.parametrize("size", [0, 1, 3, 17])
def test_generated_matrix_is_square_and_rectangular(size):
    matrix = generate_matrix(size, size)

    assert matrix.shape == (size, size)
    assert all(len(row) == size for row in matrix)
    assert matrix.dtype == np.float32


def test_fill_value_is_used_for_every_cell():
    matrix = generate_matrix(3, 2, fill_value=2.5)

    assert matrix.shape == (3, 2)
    assert np.all(matrix == np.float32(2.5))


def test_random_matrix_draws_from_unit_interval():
    matrix = generate_matrix(50, 50, random=True, rng=np.random.default_rng(7))

    assert matrix.min() >= 0.0
    assert matrix.max() < 1.0
    assert len(np.unique(matrix)) > 1


def test_generated_matrix_is_read_only():
    matrix = generate_matrix(2, 2)

    with pytest.raises(ValueError):
        matrix[0, 0] = 5.0


def test_negative_shape_is_rejected():
    with pytest.raises(ValueError):
        generate_matrix(-1, 3)


def test_manual_matrix_is_row_major():
    matrix = manual_matrix("target", 2, [1, 2, 3, 4])

    assert matrix.tolist() == [[1.0, 2.0], [3.0, 4.0]]
    assert not matrix.flags.writeable


@pytest.mark.parametrize("values", [[], [1, 2, 3], [1, 2, 3, 4, 5]])
def test_manual_matrix_rejects_wrong_value_count(values):
    with pytest.raises(MatrixSizeError, match="kernel 0"):
        manual_matrix("kernel 0", 2, values)


def test_prompt_reads_across_lines_and_stops_when_full():
    stream = io.StringIO("1 2\n3\n4 5\n6\n")

    values = prompt_matrix_values("target", 2, stream)

    assert values == [1.0, 2.0, 3.0, 4.0, 5.0]
    assert stream.readline() == "6\n"


def test_prompt_rejects_non_numeric_tokens():
    with pytest.raises(MatrixSizeError, match="'x'"):
        prompt_matrix_values("target", 1, io.StringIO("x\n"))


def test_prompt_returns_short_list_on_eof():
    assert prompt_matrix_values("target", 2, io.StringIO("1 2\n")) == [1.0, 2.0]


def test_format_matrix_is_deterministic():
    matrix = generate_matrix(2, 3, fill_value=0.5)

    first = format_matrix("Target", matrix)
    second = format_matrix("Target", generate_matrix(2, 3, fill_value=0.5))

    assert first == second
    assert first.splitlines()[0] == "Target (2x3):"
    assert "0.5000" in first
