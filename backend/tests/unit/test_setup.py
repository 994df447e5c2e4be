from mesplan.scheduling.setup import SetupMatrix
from mesplan.scheduling.types import ChangeoverRule, OperationInfo


def _op(op_id, family=None, setup=0.0):
    return OperationInfo(
        id=op_id, work_order_id=op_id, operation_type="MILLING", duration_minutes=60,
        family=family, setup_minutes=setup,
    )


MATRIX = SetupMatrix(
    [
        ChangeoverRule(machine_type="CNC", from_family="ALU", to_family="STEEL", minutes=45),
        ChangeoverRule(machine_type="CNC", from_family="ALU", to_family="ALU", minutes=0),
    ]
)


def test_rule_for_the_transition_wins_over_operation_setup():
    assert MATRIX.changeover("CNC", _op(1, "ALU"), _op(2, "STEEL", setup=10)) == 45


def test_zero_minute_rule_is_honoured():
    assert MATRIX.changeover("CNC", _op(1, "ALU"), _op(2, "ALU", setup=10)) == 0


def test_unlisted_transition_falls_back_to_operation_setup():
    assert MATRIX.changeover("CNC", _op(1, "STEEL"), _op(2, "ALU", setup=12)) == 12


def test_rules_apply_only_to_their_machine_type():
    assert MATRIX.changeover("LATHE", _op(1, "ALU"), _op(2, "STEEL", setup=5)) == 5


def test_first_operation_on_a_machine_pays_its_own_setup():
    assert MATRIX.changeover("CNC", None, _op(2, "STEEL", setup=20)) == 20


def test_operations_without_family_use_their_own_setup():
    assert MATRIX.changeover("CNC", _op(1), _op(2, setup=7)) == 7
    assert MATRIX.changeover("CNC", _op(1, "ALU"), _op(2)) == 0


def test_empty_matrix_has_no_rules():
    assert len(SetupMatrix()) == 0
    assert len(MATRIX) == 2
