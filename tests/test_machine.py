import pytest

from chip8vm.errors import StackOverflow, StackUnderflow, UnsupportedInstruction
from chip8vm.keyboard import KeyboardMapper
from chip8vm.machine import FONTSET, SCREEN_SIZE, START_ADDRESS, Chip8


def run(chip: Chip8, steps: int) -> Chip8:
    for _ in range(steps):
        chip.step()
    return chip


def test_font_loaded_at_zero():
    chip = Chip8()
    assert bytes(chip.memory[:80]) == FONTSET


# ---------- program counter ----------

def test_plain_instruction_advances_pc_by_two(make_machine):
    chip = make_machine(0x6A05)
    chip.step()
    assert chip.pc == START_ADDRESS + 2
    assert chip.V[0xA] == 5


def test_jump(make_machine):
    chip = make_machine(0x1345)
    chip.step()
    assert chip.pc == 0x345


def test_call_and_return(make_machine):
    # 200: CALL 206 / 202: LD V0,1 / 204: (pad) / 206: RET
    chip = make_machine(0x2206, 0x6001, 0x0000, 0x00EE)
    chip.step()
    assert chip.pc == 0x206
    assert chip.stack == [0x202]
    chip.step()
    assert chip.pc == 0x202
    assert chip.stack == []


def test_return_with_empty_stack_faults(make_machine):
    chip = make_machine(0x00EE)
    with pytest.raises(StackUnderflow):
        chip.step()


def test_stack_overflows_at_seventeen_calls(make_machine):
    chip = make_machine(0x2200)  # calls itself forever
    run(chip, 16)
    assert len(chip.stack) == 16
    with pytest.raises(StackOverflow):
        chip.step()


@pytest.mark.parametrize("words, taken", [
    ((0x6012, 0x3012), True),
    ((0x6012, 0x3013), False),
    ((0x6012, 0x4013), True),
    ((0x6012, 0x4012), False),
    ((0x6012, 0x6112, 0x5010), True),
    ((0x6012, 0x6113, 0x5010), False),
    ((0x6012, 0x6113, 0x9010), True),
    ((0x6012, 0x6112, 0x9010), False),
])
def test_skips(make_machine, words, taken):
    chip = run(make_machine(*words), len(words))
    end = START_ADDRESS + 2 * len(words)
    assert chip.pc == (end + 2 if taken else end)


def test_jump_with_offset(make_machine):
    chip = run(make_machine(0x6010, 0xB300), 2)
    assert chip.pc == 0x310


def test_jump_with_offset_wraps_to_12_bits(make_machine):
    chip = run(make_machine(0x60FF, 0xBFFF), 2)
    assert chip.pc == (0xFFF + 0xFF) & 0xFFF


# ---------- arithmetic ----------

def test_add_immediate_wraps_without_flag(make_machine):
    chip = run(make_machine(0x6FFF, 0x60FF, 0x7002), 3)
    assert chip.V[0] == 0x01
    assert chip.V[0xF] == 0xFF


@pytest.mark.parametrize("a, b, result, carry", [
    (0xFF, 0x01, 0x00, 1),
    (0x10, 0x20, 0x30, 0),
    (0x80, 0x80, 0x00, 1),
])
def test_add_registers_sets_carry(make_machine, a, b, result, carry):
    chip = run(make_machine(0x6000 | a, 0x6100 | b, 0x8014), 3)
    assert chip.V[0] == result
    assert chip.V[0xF] == carry


@pytest.mark.parametrize("a, b, result, no_borrow", [
    (0x10, 0x01, 0x0F, 1),
    (0x01, 0x10, 0xF1, 0),
    (0x05, 0x05, 0x00, 1),
])
def test_sub_sets_flag_when_no_borrow(make_machine, a, b, result, no_borrow):
    chip = run(make_machine(0x6000 | a, 0x6100 | b, 0x8015), 3)
    assert chip.V[0] == result
    assert chip.V[0xF] == no_borrow


def test_subn_sets_flag_when_no_borrow(make_machine):
    chip = run(make_machine(0x6001, 0x6110, 0x8017), 3)
    assert chip.V[0] == 0x0F
    assert chip.V[0xF] == 1
    chip = run(make_machine(0x6010, 0x6101, 0x8017), 3)
    assert chip.V[0] == 0xF1
    assert chip.V[0xF] == 0


def test_shifts_report_bit_shifted_out(make_machine):
    chip = run(make_machine(0x6005, 0x8006), 2)
    assert (chip.V[0], chip.V[0xF]) == (0x02, 1)
    chip = run(make_machine(0x6081, 0x800E), 2)
    assert (chip.V[0], chip.V[0xF]) == (0x02, 1)
    chip = run(make_machine(0x6040, 0x800E), 2)
    assert (chip.V[0], chip.V[0xF]) == (0x80, 0)


def test_flag_written_after_result_when_target_is_vf(make_machine):
    chip = run(make_machine(0x6FFF, 0x6101, 0x8F14), 3)
    assert chip.V[0xF] == 1


def test_logic_ops(make_machine):
    chip = run(make_machine(0x600C, 0x610A, 0x8011), 3)
    assert chip.V[0] == 0x0E
    chip = run(make_machine(0x600C, 0x610A, 0x8012), 3)
    assert chip.V[0] == 0x08
    chip = run(make_machine(0x600C, 0x610A, 0x8013), 3)
    assert chip.V[0] == 0x06
    chip = run(make_machine(0x600C, 0x610A, 0x8010), 3)
    assert chip.V[0] == 0x0A


def test_random_is_masked(make_machine):
    chip = run(make_machine(0xC00F), 1)
    assert chip.V[0] & 0xF0 == 0


# ---------- drawing ----------

def test_draw_twice_restores_buffer_and_reports_collision(make_machine):
    # I = glyph "0", draw it at (V0, V1) twice
    chip = make_machine(0x6003, 0x6104, 0xA000, 0xD015, 0xD015)
    run(chip, 4)
    assert chip.V[0xF] == 0
    assert any(chip.display)
    chip.step()
    assert chip.V[0xF] == 1
    assert chip.display == bytearray(SCREEN_SIZE)


def test_draw_wraps_at_bottom_right(make_machine):
    # 8x1 sprite of 0xFF at (63, 31)
    chip = make_machine(0x603F, 0x611F, 0xA300, 0xD011)
    chip.memory[0x300] = 0xFF
    run(chip, 4)
    assert chip.display[2047] == 1
    assert list(chip.display[0:7]) == [1] * 7
    assert sum(chip.display) == 8


def test_clear_screen_keeps_buffer_object(make_machine):
    chip = make_machine(0xA000, 0xD005, 0x00E0)
    buffer = chip.display
    run(chip, 3)
    assert chip.display is buffer
    assert not any(buffer)


# ---------- memory and I ----------

@pytest.mark.parametrize("value, digits", [(255, [2, 5, 5]), (7, [0, 0, 7]), (120, [1, 2, 0])])
def test_bcd(make_machine, value, digits):
    chip = run(make_machine(0x6000 | value, 0xA400, 0xF033), 3)
    assert list(chip.memory[0x400:0x403]) == digits


def test_store_and_load_registers(make_machine):
    chip = make_machine(0x6011, 0x6122, 0x6233, 0xA400, 0xF155,
                        0x6000, 0x6100, 0x6200, 0xF265)
    run(chip, 5)
    assert list(chip.memory[0x400:0x403]) == [0x11, 0x22, 0x00]
    assert chip.I == 0x400
    run(chip, 4)
    assert list(chip.V[:3]) == [0x11, 0x22, 0x00]


def test_store_wraps_memory(make_machine):
    chip = run(make_machine(0x60AB, 0x61CD, 0xAFFF, 0xF155), 4)
    assert chip.memory[0xFFF] == 0xAB
    assert chip.memory[0x000] == 0xCD


def test_font_address(make_machine):
    chip = run(make_machine(0x600A, 0xF029), 2)
    assert chip.I == 0xA * 5


def test_add_to_i(make_machine):
    chip = run(make_machine(0x6010, 0xA0F8, 0xF01E), 3)
    assert chip.I == 0x108


def test_timers_opcodes(make_machine):
    chip = run(make_machine(0x6020, 0xF015, 0xF018, 0xF107), 4)
    assert chip.timers.delay == 0x20
    assert chip.timers.sound == 0x20
    assert chip.V[1] == 0x20


# ---------- keys ----------

def test_skip_if_key_pressed(make_machine):
    chip = make_machine(0x6005, 0xE09E)
    chip.keypad.press(53)  # '5'
    run(chip, 2)
    assert chip.pc == START_ADDRESS + 6


def test_skip_if_key_not_pressed(make_machine):
    chip = make_machine(0x6005, 0xE0A1)
    chip.keypad.press(49)
    run(chip, 2)
    assert chip.pc == START_ADDRESS + 6


@pytest.mark.parametrize("opcode, held", [(0xE09E, 49), (0xE09E, None), (0xE0A1, 53)])
def test_key_skip_not_taken(make_machine, opcode, held):
    chip = make_machine(0x6005, opcode)
    chip.keypad.press(held)
    run(chip, 2)
    assert chip.pc == START_ADDRESS + 4


def test_skip_if_key_pressed_in_raw_mode(make_machine):
    chip = make_machine(0x6005, 0xE09E, 0x0000, 0xE09E)
    chip.mapper = KeyboardMapper(raw=True)
    chip.keypad.press(5)
    run(chip, 2)
    assert chip.pc == START_ADDRESS + 6
    chip.keypad.press(53)  # '5' is only key 5 in table mode
    chip.step()
    assert chip.pc == START_ADDRESS + 8


def test_wait_for_key_consumes_pressed_key(make_machine):
    chip = make_machine(0x600A, 0xF00A)
    chip.keypad.press(113)  # 'q' is key A
    run(chip, 2)
    assert chip.awaiting_key is None
    assert chip.keypad.current is None


def test_wait_for_key_records_pending_key(make_machine):
    chip = run(make_machine(0x600A, 0xF00A), 2)
    assert chip.awaiting_key == 113
    assert chip.pc == START_ADDRESS + 4


# ---------- faults ----------

@pytest.mark.parametrize("opcode", [0x0123, 0x5011, 0x8018, 0x9011, 0xE0FF, 0xF0FF])
def test_unsupported_opcodes(make_machine, opcode):
    chip = make_machine(opcode)
    with pytest.raises(UnsupportedInstruction) as info:
        chip.step()
    assert info.value.opcode == opcode
    assert info.value.pc == START_ADDRESS
    assert f"{opcode:04X}" in str(info.value)


def test_finished_after_last_instruction(make_machine):
    chip = make_machine(0x6001)
    assert not chip.finished
    chip.step()
    assert chip.finished
