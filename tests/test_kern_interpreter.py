import pytest
from kern.kern_runtime import ScriptRunner, StdLib, collect_primitives
from kern.kern_interpreter import Evaluator, create_root_environment, make_combiner
from kern.kern_printer import Printer
from kern.kern_datatypes import (
    Pair, Symbol, Nil, Inert, Environment, Operative, Applicative, Primitive,
    UnboundSymbol, ArityMismatch, NotCombinable, TypeMismatch, UserError,
    StackExhausted, StepLimitExceeded, make_list
)


@pytest.fixture(scope="module")
def reader():
    """A runner used only for its reader."""
    return ScriptRunner(load_core=False)

@pytest.fixture
def evaluator():
    """Returns a new Evaluator for each test."""
    return Evaluator()

@pytest.fixture
def log():
    return []

@pytest.fixture
def env(evaluator, log):
    """A root environment with the bootstrap primitives and a `trace` probe."""
    primitives = collect_primitives(StdLib(evaluator))

    def trace(x):
        log.append(x)
        return x

    def depth():
        return len(evaluator.call_stack)

    primitives["trace"] = trace
    primitives["depth"] = depth
    return create_root_environment(primitives)

@pytest.fixture
def run(reader, evaluator, env):
    def _run(source):
        result = Inert
        for form in reader.read(source):
            result = evaluator.eval(form, env)
        return result
    return _run


# --- Root environment ---

def test_root_environment_wraps_plain_callables(env):
    assert isinstance(env["cons"], Applicative)
    assert isinstance(env["cons"].underlying, Primitive)
    assert isinstance(env["$vau"], Primitive)
    assert env.parent is None

def test_root_environment_accepts_symbol_keys():
    def one(): return 1
    env = create_root_environment({Symbol("one"): one})
    assert isinstance(env["one"], Applicative)

def test_make_combiner_passes_combiners_through():
    op = Operative(Environment(), Nil, Nil, [])
    assert make_combiner("op", op) is op
    with pytest.raises(TypeError):
        make_combiner("bad", 5)

# --- Self-evaluation and lookup ---

@pytest.mark.parametrize("value", [1, -7, "text", True, False, Nil, Inert])
def test_atoms_self_evaluate(evaluator, env, value):
    assert evaluator.eval(value, env) is value

def test_environment_self_evaluates(evaluator, env):
    other = Environment()
    assert evaluator.eval(other, env) is other

def test_symbol_lookup(evaluator, env):
    env["x"] = 42
    assert evaluator.eval(Symbol("x"), env) == 42

def test_unbound_symbol(run):
    with pytest.raises(UnboundSymbol) as e:
        run("no-such-thing")
    assert e.value.name is Symbol("no-such-thing")

def test_eval_requires_an_environment(evaluator):
    with pytest.raises(TypeMismatch):
        evaluator.eval(1, {})

def test_not_combinable(run):
    with pytest.raises(NotCombinable) as e:
        run("(1 2 3)")
    assert e.value.value == 1
    with pytest.raises(NotCombinable):
        run('("f")')

# --- Operatives ---

def test_operative_laziness(run, log):
    assert run('(($vau (t c a) e (eval c e)) #t (trace 1) (error "boom"))') == 1
    assert log == [1]

def test_operative_receives_operands_unevaluated(run):
    result = run("(($vau (x) #ignore x) (undefined-thing 1))")
    assert result == make_list([Symbol("undefined-thing"), 1])

def test_operative_receives_callers_environment(run, env):
    assert run("(($vau () e e))") is env

def test_nil_and_ignore_environment_parameters_bind_nothing(run):
    assert run("(($vau (a b) nil b) 1 2)") == 2
    assert run("(($vau (a b) () a) 1 2)") == 1
    assert run("(($vau (a . b) #ignore b) 1 2)") == make_list([2])

def test_operative_body_is_a_sequence(run, log):
    assert run("(($vau () #ignore (trace 1) (trace 2)))") == 2
    assert log == [1, 2]

def test_empty_body_returns_inert(run):
    assert run("(($vau () #ignore))") is Inert

def test_operative_arity_mismatch(run):
    with pytest.raises(ArityMismatch):
        run("(($vau (a b) #ignore a) 1)")
    with pytest.raises(ArityMismatch):
        run("(($vau () #ignore 1) 2)")

def test_static_environment_is_captured(run):
    result = run("""
        ($define! make ($vau (v) #ignore ($vau () #ignore v)))
        ($define! seven (make 7))
        ($define! v 100)
        (seven)
    """)
    assert result == 7

# --- Applicatives ---

def test_applicative_eagerness_and_order(run, log):
    assert run("((wrap ($vau args #ignore args)) (trace 1) (trace 2))") == make_list([1, 2])
    assert log == [1, 2]

def test_each_wrap_layer_evaluates_once_more(run, env):
    env["y"] = Symbol("z")
    env["z"] = 5
    assert run("((wrap ($vau (x) #ignore x)) y)") is Symbol("z")
    assert run("((wrap (wrap ($vau (x) #ignore x))) y)") == 5

def test_unwrap_recovers_the_operative(run):
    assert run("((unwrap (wrap ($vau (x) #ignore x))) (a b))") == make_list([Symbol("a"), Symbol("b")])
    with pytest.raises(TypeMismatch):
        run("(unwrap ($vau () #ignore 1))")
    with pytest.raises(TypeMismatch):
        run("(wrap 5)")

def test_applicatives_reject_dotted_operands(run):
    with pytest.raises(ArityMismatch):
        run("(cons 1 . 2)")

# --- Booleans as combiners ---

def test_booleans_select_an_operand(run, log):
    assert run("(#t 1 2)") == 1
    assert run("(#f 1 2)") == 2
    assert run("(#t (trace 1) (trace 2))") == 1
    assert log == [1, 2]

def test_boolean_selection_needs_two_operands(run):
    with pytest.raises(ArityMismatch):
        run("(#t 1)")

# --- Environments ---

def test_environment_sharing(run):
    result = run("""
        ($define! accessors
          (($vau () #ignore
             ($define! x 0)
             (cons ($vau () #ignore x)
                   ($vau (v) #ignore ($set! x v))))))
        ((tail accessors) 42)
        ((head accessors))
    """)
    assert result == 42

def test_shadowing(run):
    assert run("""
        ($define! x 1)
        (($vau () #ignore ($define! x 2) x))
    """) == 2
    assert run("x") == 1

def test_set_reaches_owning_frame(run):
    assert run("""
        ($define! x 1)
        (($vau () #ignore ($set! x 5)))
        x
    """) == 5
    with pytest.raises(UnboundSymbol):
        run("($set! never-defined 1)")

def test_make_environment(run, env):
    child = run("(make-environment (($vau () e e)))")
    assert isinstance(child, Environment)
    assert child.parent is env
    assert run("(eval (cons + (cons 1 (cons 2 ()))) (make-environment))") == 3

# --- Core forms ---

def test_define_returns_inert_and_names_combiners(run, env):
    assert run("($define! f ($vau () #ignore 1))") is Inert
    assert env["f"].name == "f"
    run("($define! g (wrap ($vau () #ignore 1)))")
    assert env["g"].name == "g"
    run("($define! h f)")
    assert env["h"].name == "f"

def test_define_destructures(run, env):
    run("($define! (p (q . r)) (cons 1 (cons (cons 2 (cons 3 ())) ())))")
    assert env["p"] == 1
    assert env["q"] == 2
    assert env["r"] == make_list([3])

def test_vau_rejects_env_parameter_that_aliases_a_formal(run):
    with pytest.raises(TypeMismatch):
        run("($vau (e) e e)")
    with pytest.raises(TypeMismatch):
        run("($vau (x) 5 x)")
    with pytest.raises(TypeMismatch):
        run("($vau (x x) #ignore x)")

def test_sequence(run, log):
    assert run("($sequence (trace 1) (trace 2))") == 2
    assert log == [1, 2]
    assert run("($sequence)") is Inert

def test_eval_checks_its_environment(run):
    with pytest.raises(TypeMismatch):
        run("(eval 1 2)")

# --- Tail calls and resources ---

LOOP = """
($define! loop
  ($vau (n) e
    (eval ((= (eval n e) 0)
           (cons depth ())
           (cons loop (cons (- (eval n e) 1) ())))
          e)))
"""

def test_tail_calls_run_in_constant_stack(run):
    run(LOOP)
    shallow = run("(loop 3)")
    deep = run("(loop 100000)")
    assert shallow == deep

def test_deep_non_tail_nesting_is_stack_exhausted(run, evaluator, env):
    expr = 0
    for _ in range(100_000):
        expr = make_list([Symbol("+"), 1, expr])
    with pytest.raises(StackExhausted):
        evaluator.eval(expr, env)
    evaluator.reset()
    assert run("(+ 1 2)") == 3

def test_step_limit(reader):
    evaluator = Evaluator(step_limit=200)
    env = create_root_environment(collect_primitives(StdLib(evaluator)))
    forms = reader.read(LOOP.replace("depth", "+") + "(loop 1000)")
    evaluator.eval(forms[0], env)
    evaluator.reset()
    with pytest.raises(StepLimitExceeded) as e:
        evaluator.eval(forms[1], env)
    assert e.value.limit == 200

# --- Call stack ---

def test_call_stack_cleared_after_success(run, evaluator):
    run("(cons 1 (cons 2 ()))")
    assert evaluator.call_stack == []

def test_call_stack_kept_on_failure(run, evaluator):
    with pytest.raises(TypeMismatch):
        run("(cons 1 (head 5))")
    frames = [Printer().pformat(f) for f in evaluator.call_stack]
    assert frames == ["(cons 1 (head 5))", "(head 5)"]

def test_user_error_propagates(run):
    with pytest.raises(UserError) as e:
        run('(error "bad" 1)')
    assert e.value.message == "bad"
    assert e.value.irritants == [1]

# --- Host apply ---

def test_apply_with_evaluated_arguments(evaluator, env):
    assert evaluator.apply(env["cons"], [1, 2]) == Pair(1, 2)
    # Symbols passed as arguments are not evaluated again.
    quoted = evaluator.apply(env["cons"], [Symbol("undefined"), Nil])
    assert quoted == make_list([Symbol("undefined")])
