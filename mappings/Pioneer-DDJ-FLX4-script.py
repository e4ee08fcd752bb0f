# Script helpers for the Pioneer DDJ-FLX4 mapping.
# Runs inside the deckmap sandbox: `engine`, `script` and `midi` are provided,
# imports are not available.


class DDJFLX4:
    shift = False
    # Jog ticks seen per deck since load
    jog_ticks = {}

    @staticmethod
    def init(controller_id, debug):
        DDJFLX4.shift = False
        DDJFLX4.jog_ticks = {}
        if debug:
            print("DDJ-FLX4 init", controller_id)

    @staticmethod
    def shutdown():
        DDJFLX4.shift = False

    @staticmethod
    def shiftPressed(channel, control, value, status, group):
        DDJFLX4.shift = value > 0

    @staticmethod
    def jogTurn(channel, control, value, status, group):
        deck = script.deckFromGroup(group)
        if deck is None:
            return
        DDJFLX4.jog_ticks[deck] = DDJFLX4.jog_ticks.get(deck, 0) + 1
        # Relative encoder centred on 0x40; shift makes it a fine nudge
        if DDJFLX4.shift:
            value = 0x40 + (value - 0x40) // 2 if value >= 0x40 else 0x40 - (0x40 - value) // 2
        engine.setValue(group, "jog", value / 127)
