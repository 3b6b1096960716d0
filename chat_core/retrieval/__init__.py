"""检索增强：用知识库检索结果改写用户提示词。"""
