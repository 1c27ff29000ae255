# Overview: Kiosk-side runtime (presence, card registration, card-reader relay, checkout).
