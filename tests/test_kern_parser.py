import pytest
import yaml
from pathlib import Path
from koine import Parser

# --- Test Setup and Fixtures ---

@pytest.fixture(scope="module")
def parser():
    """Loads the Kern grammar and returns a Parser instance."""
    grammar_path = Path(__file__).parent / ".." / "kern" / "kern_grammar.yaml"
    with grammar_path.open() as f:
        grammar_def = yaml.safe_load(f)
    return Parser(grammar_def)

def clean_ast(node):
    """
    Strips location info so AST comparisons focus on tags and leaf text.
    """
    if isinstance(node, dict) and 'ast' in node and 'status' in node:
        node = node['ast']
    if isinstance(node, list):
        return [clean_ast(n) for n in node]
    if not isinstance(node, dict):
        return node
    new_node = {'tag': node['tag']}
    if 'children' in node:
        new_node['children'] = clean_ast(node['children'])
    else:
        new_node['text'] = node['text']
    return new_node

def leaf(tag, text):
    return {'tag': tag, 'text': text}

def program(*forms):
    return {'tag': 'program', 'children': list(forms)}

def lst(*items):
    return {'tag': 'list', 'children': list(items)}

# --- Atoms ---

@pytest.mark.parametrize("source, expected", [
    ("42", leaf('integer', '42')),
    ("-7", leaf('integer', '-7')),
    ("+3", leaf('integer', '+3')),
    ('"hi there"', leaf('string', '"hi there"')),
    (r'"a \"quoted\" word"', leaf('string', r'"a \"quoted\" word"')),
    ("#t", leaf('boolean', '#t')),
    ("#false", leaf('boolean', '#false')),
    ("#ignore", leaf('constant', '#ignore')),
    ("#inert", leaf('constant', '#inert')),
    ("nil", leaf('nil', 'nil')),
    ("foo", leaf('symbol', 'foo')),
    ("$define!", leaf('symbol', '$define!')),
    ("^if", leaf('symbol', '^if')),
    ("null?", leaf('symbol', 'null?')),
    ("-", leaf('symbol', '-')),
    ("1+", leaf('symbol', '1+')),
    ("nil?", leaf('symbol', 'nil?')),
    ("...", leaf('symbol', '...')),
])
def test_atoms(parser, source, expected):
    result = parser.parse(source)
    assert result['status'] == 'success', result.get('message')
    assert clean_ast(result) == program(expected)

# --- Lists ---

def test_empty_program(parser):
    result = parser.parse("  ; only a comment\n")
    assert result['status'] == 'success', result.get('message')
    assert clean_ast(result) == program()

def test_empty_list(parser):
    assert clean_ast(parser.parse("()")) == program(lst())

def test_nested_list(parser):
    result = parser.parse("(a (b 1) ())")
    assert clean_ast(result) == program(
        lst(leaf('symbol', 'a'), lst(leaf('symbol', 'b'), leaf('integer', '1')), lst())
    )

def test_dotted_list(parser):
    result = parser.parse("(a . b)")
    assert clean_ast(result) == program(
        lst(leaf('symbol', 'a'), {'tag': 'tail', 'children': [leaf('symbol', 'b')]})
    )

def test_multiple_forms_and_comments(parser):
    source = """
    ; leading comment
    (f 1) ; trailing comment
    x
    """
    assert clean_ast(parser.parse(source)) == program(
        lst(leaf('symbol', 'f'), leaf('integer', '1')),
        leaf('symbol', 'x'),
    )

def test_list_positions(parser):
    result = parser.parse("\n  (f x)")
    node = result['ast']['children'][0]
    assert (node['line'], node['col']) == (2, 3)

@pytest.mark.parametrize("source", ["(a b", "a)", '"open', "(a . b c)"])
def test_malformed_input(parser, source):
    assert parser.parse(source)['status'] == 'error'
