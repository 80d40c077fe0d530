import pytest
from rpipe.rpipe_reader import ResponseReader, read_response, tokenize, clean_header
from rpipe.rpipe_datatypes import Scalar, Vector, NamedList, Table, MalformedResponse

@pytest.fixture
def reader():
    return ResponseReader()

# Test cases: (id, lines, expected)
READ_TEST_CASES = [
    ("empty", [], Vector([])),
    ("only_blank", ["", "  "], Vector([])),
    ("scalar", ["[1] 42"], Scalar("42")),
    ("scalar_string", ['[1] "a b"'], Scalar('"a b"')),
    ("vector", ["[1] 1 2 3"], Vector(["1", "2", "3"])),
    ("vector_wrapped", ["[1] 1 2 3", "[4] 4 5"], Vector(["1", "2", "3", "4", "5"])),
    ("vector_padded_index", ["  [1] 1 2", " [10] 3"], Vector(["1", "2", "3"])),
    ("vector_trailing_blank", ["[1] TRUE FALSE", ""], Vector(["TRUE", "FALSE"])),
    ("vector_strings", ['[1] "x" "y z"'], Vector(['"x"', '"y z"'])),
    (
        "named_list",
        ["[[x]]", "[1] 1 2", "", "[[y]]", "[1] 3"],
        NamedList([("x", Vector(["1", "2"])), ("y", Scalar("3"))]),
    ),
    (
        "named_list_dollar",
        ["$a", "[1] 1", "", "$b", "[1] 4 5", ""],
        NamedList([("a", Scalar("1")), ("b", Vector(["4", "5"]))]),
    ),
    (
        "named_list_positional",
        ["[[1]]", "[1] 10", "", "[[2]]", '[1] "s"'],
        NamedList([("1", Scalar("10")), ("2", Scalar('"s"'))]),
    ),
    (
        "table",
        ["  A B", "r1 1 2", "r2 3 4"],
        Table(["r1", "r2"], ["A", "B"], [["1", "2"], ["3", "4"]]),
    ),
    (
        "matrix_numeric_headers",
        ["     [,1] [,2]", "[1,]    1    3", "[2,]    2    4"],
        Table([1, 2], [1, 2], [["1", "3"], ["2", "4"]]),
    ),
    (
        "table_multi_block",
        ["   A B", "r1 1 2", "r2 3 4", "   C", "r1 5", "r2 6"],
        Table(["r1", "r2"], ["A", "B", "C"], [["1", "2", "5"], ["3", "4", "6"]]),
    ),
    (
        "table_multi_block_blank_separated",
        ["   A", "r1 1", "", "   B", "r1 2"],
        Table(["r1"], ["A", "B"], [["1", "2"]]),
    ),
    (
        "matrix_ten_rows",
        [
            "      [,1]", " [1,]    1", " [2,]    2", " [3,]    3", " [4,]    4", " [5,]    5",
            " [6,]    6", " [7,]    7", " [8,]    8", " [9,]    9", "[10,]   10",
        ],
        Table(list(range(1, 11)), [1], [[str(i)] for i in range(1, 11)]),
    ),
    ("bare_token", ["NULL"], Scalar("NULL")),
]

@pytest.mark.parametrize(
    "test_id, lines, expected",
    READ_TEST_CASES,
    ids=[t[0] for t in READ_TEST_CASES]
)
def test_read(reader, test_id, lines, expected):
    assert reader.read(lines) == expected


@pytest.mark.parametrize("lines", [
    ["[1 2 3"],
    ["[[x]]", "", "[[y]]", "[1] 1"],
    ["[[x]]", "[1] 1", "", "not a marker"],
    ["   A B", "r1 1"],
    ["   A", "r1 1", "   B", "r2 2"],
    ["hello world"],
    ["[1] 1", "", "[2] 2"],
], ids=["open_index", "empty_list_element", "bad_marker", "short_row",
        "row_mismatch_between_blocks", "unrecognized", "blank_inside_vector"])
def test_malformed(reader, lines):
    with pytest.raises(MalformedResponse):
        reader.read(lines)


def test_nested_named_list(reader):
    value = reader.read(["$outer", "$outer$inner", "[1] 1", ""])
    assert value == NamedList([("outer", NamedList([("inner", Scalar("1"))]))])


def test_nested_named_list_keeps_siblings(reader):
    value = reader.read(["$a", "$a$b", "[1] 1", "", "$a$c", "[1] 2", "", "", "$d", "[1] 3"])
    assert value == NamedList([
        ("a", NamedList([("b", Scalar("1")), ("c", Scalar("2"))])),
        ("d", Scalar("3")),
    ])


def test_nested_positional_list(reader):
    value = reader.read([
        "[[1]]", "[[1]][[1]]", "[1] 1", "", "[[1]][[2]]", "[1] 2", "", "",
        "[[2]]", "[[2]]$x", "[1] 3", "", "",
    ])
    assert value == NamedList([
        ("1", NamedList([("1", Scalar("1")), ("2", Scalar("2"))])),
        ("2", NamedList([("x", Scalar("3"))])),
    ])


def test_list_element_holding_multi_block_table(reader):
    value = reader.read(["$m", "   A", "r1 1", "", "   B", "r1 2", "", "$n", "[1] 0"])
    assert value == NamedList([
        ("m", Table(["r1"], ["A", "B"], [["1", "2"]])),
        ("n", Scalar("0")),
    ])


def test_named_list_lookup():
    value = read_response(["[[x]]", "[1] 1 2", "", "[[y]]", "[1] 3"])
    assert value.names() == ["x", "y"]
    assert value["y"] == Scalar("3")
    with pytest.raises(KeyError):
        value["z"]


def test_tokenize_keeps_quoted_strings():
    assert tokenize('  "a b"  c "d\\"e"') == ['"a b"', "c", '"d\\"e"']


def test_clean_header():
    assert clean_header("[3,]") == 3
    assert clean_header("[,12]") == 12
    assert clean_header("Sepal.Length") == "Sepal.Length"
