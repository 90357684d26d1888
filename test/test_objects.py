"""
Object tests for Vernacular
Tests fields, build, dynamic dispatch and inheritance
"""

import pytest
from error_handling import VernacularArityError, VernacularNoSuchMethodError, VernacularTypeMismatchError
from objects import class_chain, make_class_def, resolve_build, resolve_method


ANIMALS = (
    "Object Animal:\n"
    "    name as Text\n"
    "    sound as Text is \"...\"\n"
    "    legs as Whole is 4\n"
    "\n"
    "    build requires name as Text:\n"
    "        my name is name\n"
    "\n"
    "    Job speak returning Text:\n"
    "        output \"{my name} says {my sound}\"\n"
    "\n"
    "    Job describe returning Text:\n"
    "        output \"{my name} has {my legs} legs\"\n"
    "\n"
    "Object Dog inherits Animal:\n"
    "    tricks as List of Text is []\n"
    "\n"
    "    build requires name as Text:\n"
    "        my name is name\n"
    "        my sound is \"Woof\"\n"
    "\n"
    "    Job learn requires trick as Text:\n"
    "        my tricks is append(my tricks, trick)\n"
    "\n"
    "    Job speak returning Text:\n"
    "        output \"{my name} barks\"\n"
    "\n"
    "Object Bird inherits Animal:\n"
    "    legs as Whole is 2\n"
)


class TestClassRuntime:
  """Test ClassDef hierarchy helpers"""

  @pytest.fixture
  def hierarchy(self):
    speak = {'type': "Job", 'value': {'name': 'speak'}}
    base = make_class_def("Base", None, [], None, {'speak': speak}, {})
    child = make_class_def("Child", base, [], {'type': "Job", 'value': {'name': 'build'}}, {}, {})
    leaf = make_class_def("Leaf", child, [], None, {}, {})
    return base, child, leaf, speak

  def test_class_chain_is_root_first(self, hierarchy):
    """Test chain order"""
    base, child, leaf, _ = hierarchy
    assert class_chain(leaf) == [base, child, leaf]

  def test_method_resolution_walks_upward(self, hierarchy):
    """Test inherited method lookup"""
    _, _, leaf, speak = hierarchy
    assert resolve_method(leaf, 'speak') is speak
    assert resolve_method(leaf, 'missing') is None

  def test_nearest_build(self, hierarchy):
    """Test that the closest build wins"""
    base, child, leaf, _ = hierarchy
    assert resolve_build(leaf) is child.build
    assert resolve_build(base) is None

  def test_methods_are_read_only(self, hierarchy):
    """Test that ClassDefs cannot be mutated"""
    base = hierarchy[0]
    with pytest.raises(TypeError):
      base.methods['other'] = None


class TestInstances:
  """Test new, fields and dispatch through the interpreter"""

  def test_build_sets_fields(self, run):
    """Test construction and field access"""
    result = run(ANIMALS + "a is new Animal(\"Tom\")\nn is a.name\nl is a.legs\n")
    assert result.bindings['n'] == "Tom"
    assert result.bindings['l'] == 4
    assert result.bindings['a'] == {'name': "Tom", 'sound': "...", 'legs': 4}

  def test_overridden_method(self, run):
    """Test dynamic dispatch to the subclass"""
    result = run(ANIMALS + "d is new Dog using \"Rex\"\ns is d.speak()\n")
    assert result.bindings['s'] == "Rex barks"

  def test_inherited_method(self, run):
    """Test a method found on the parent"""
    result = run(ANIMALS + "d is new Dog using \"Rex\"\ns is d.describe()\n")
    assert result.bindings['s'] == "Rex has 4 legs"

  def test_parent_build_used_when_child_has_none(self, run):
    """Test that Bird runs Animal's build and its own default"""
    result = run(ANIMALS + "b is new Bird(\"Tweety\")\ns is b.describe()\n")
    assert result.bindings['s'] == "Tweety has 2 legs"

  def test_field_mutation_through_method(self, run):
    """Test that methods mutate the receiver"""
    source = ANIMALS + "d is new Dog(\"Rex\")\nd.learn(\"sit\")\nd.learn at \"roll\"\nt is d.tricks\n"
    result = run(source)
    assert result.bindings['t'] == ["sit", "roll"]

  def test_instances_do_not_share_fields(self, run):
    """Test that list defaults are fresh per instance"""
    source = ANIMALS + "a is new Dog(\"A\")\nb is new Dog(\"B\")\na.learn(\"sit\")\nn is length(b.tricks)\n"
    result = run(source)
    assert result.bindings['n'] == 0

  def test_field_type_enforced(self, run):
    """Test assigning the wrong type to a declared field"""
    with pytest.raises(VernacularTypeMismatchError):
      run(ANIMALS + "a is new Animal(\"Tom\")\na.legs is \"four\"\n")

  def test_missing_method(self, run):
    """Test NoSuchMethodError"""
    with pytest.raises(VernacularNoSuchMethodError) as exc_info:
      run(ANIMALS + "a is new Animal(\"Tom\")\na.fly()\n")
    assert "Animal has no method 'fly'" in exc_info.value.message

  def test_build_arity(self, run):
    """Test ArityError from build"""
    with pytest.raises(VernacularArityError):
      run(ANIMALS + "a is new Animal()\n")

  def test_new_without_build_rejects_arguments(self, run):
    """Test an Object with no build anywhere"""
    with pytest.raises(VernacularArityError) as exc_info:
      run("Object Point:\n    x is 0\np is new Point(1)\n")
    assert "new Point" in exc_info.value.message

  def test_default_fields_without_build(self, run):
    """Test defaults alone"""
    result = run("Object Point:\n    x is 0\n    y is 0\np is new Point()\np.x is 3\n")
    assert result.bindings['p'] == {'x': 3, 'y': 0}

  def test_object_type_pattern(self, run, sink):
    """Test that match type patterns use the class name"""
    source = ANIMALS + (
        "Job kind requires v:\n"
        "    match v:\n"
        "        when Dog: show \"dog\"\n"
        "        when Animal: show \"animal\"\n"
        "kind(new Dog(\"Rex\"))\n"
        "kind(new Animal(\"Tom\"))\n"
    )
    run(source)
    assert sink.lines == ['dog', 'animal']

  def test_parent_must_be_an_object(self, run):
    """Test inheriting from a non-Object"""
    with pytest.raises(VernacularTypeMismatchError):
      run("Base is 1\nObject Child inherits Base:\n    x is 1\n")

  def test_bound_method_as_value(self, run):
    """Test that methods can be passed around with their receiver"""
    result = run(ANIMALS + "d is new Dog(\"Rex\")\nspeaker is d.speak\ns is speaker()\n")
    assert result.bindings['s'] == "Rex barks"
