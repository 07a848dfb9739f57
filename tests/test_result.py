#!/usr/bin/env python3
"""
Test suite for mediasorter/result.py: Ok/Err values
"""

import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from mediasorter.errors import ErrorKind, ResultError
from mediasorter.result import Ok, Err


class TestOk:
    """Successful results"""

    def test_flags_and_unwrap(self):
        result = Ok(42)
        assert result.is_ok
        assert not result.is_err
        assert result.unwrap() == 42
        assert result.unwrap_or(0) == 42

    def test_map_transforms_value(self):
        assert Ok(2).map(lambda v: v * 10) == Ok(20)


class TestErr:
    """Failure results"""

    def test_flags(self):
        result = Err(ErrorKind.NOT_FOUND, 'missing')
        assert result.is_err
        assert not result.is_ok

    def test_unwrap_raises_with_kind(self):
        with pytest.raises(ResultError) as excinfo:
            Err(ErrorKind.VALIDATION, 'bad confidence').unwrap()
        assert excinfo.value.kind == ErrorKind.VALIDATION
        assert 'bad confidence' in str(excinfo.value)

    def test_unwrap_or_returns_default(self):
        assert Err(ErrorKind.PARSE, 'empty').unwrap_or('fallback') == 'fallback'

    def test_map_is_a_no_op(self):
        failure = Err(ErrorKind.PARSE, 'empty')
        assert failure.map(lambda v: v + 1) is failure
